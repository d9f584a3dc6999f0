"""Tagged patch ops for the game-state document.

Narrators hand back loose nested change objects with a few magic keys
(`player.inventoryAdd`, `player.inventoryRemove`, `quests.completeQuest`, `history`).
`split_changes` turns such an object into an ordered list of explicit ops; the special
ops come first and their keys are stripped before the remaining object is deep-merged.

All functions here work on plain dict documents (the by-alias dump of `GameState`).
"""
from __future__ import annotations

import copy
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Literal

logger = logging.getLogger(__name__)

PatchKind = Literal["merge", "inventoryAdd", "inventoryRemove", "completeQuest", "appendHistory"]


@dataclass(frozen=True, slots=True)
class PatchOp:
    kind: PatchKind
    payload: Any

    @classmethod
    def merge(cls, changes: Mapping[str, Any]) -> "PatchOp":
        return cls(kind="merge", payload=copy.deepcopy(dict(changes)))

    @classmethod
    def inventory_add(cls, items: Sequence[Mapping[str, Any]]) -> "PatchOp":
        return cls(kind="inventoryAdd", payload=[dict(i) for i in items])

    @classmethod
    def inventory_remove(cls, items: Sequence[Mapping[str, Any]]) -> "PatchOp":
        return cls(kind="inventoryRemove", payload=[dict(i) for i in items])

    @classmethod
    def complete_quest(cls, quest: str, *, next_quest: str | None = None) -> "PatchOp":
        return cls(kind="completeQuest", payload={"quest": quest, "next": next_quest})

    @classmethod
    def append_history(cls, events: Sequence[str]) -> "PatchOp":
        return cls(kind="appendHistory", payload=[str(e) for e in events])


def _as_item_list(value: Any) -> list[dict[str, Any]]:
    if isinstance(value, Mapping):
        value = [value]
    if not isinstance(value, list):
        return []
    return [dict(v) for v in value if isinstance(v, Mapping)]


def split_changes(changes: Mapping[str, Any]) -> list[PatchOp]:
    """Split a loose change object into explicit ops.

    The input is not modified; the returned ops own deep copies of every payload.
    """

    remaining: dict[str, Any] = copy.deepcopy(dict(changes))
    ops: list[PatchOp] = []

    player = remaining.get("player")
    if isinstance(player, dict):
        if "inventoryAdd" in player:
            ops.append(PatchOp(kind="inventoryAdd", payload=_as_item_list(player.pop("inventoryAdd"))))
        if "inventoryRemove" in player:
            ops.append(PatchOp(kind="inventoryRemove", payload=_as_item_list(player.pop("inventoryRemove"))))
        if not player:
            remaining.pop("player")

    quests = remaining.get("quests")
    if isinstance(quests, dict) and "completeQuest" in quests:
        quest = quests.pop("completeQuest")
        if isinstance(quest, str) and quest.strip():
            ops.append(PatchOp(kind="completeQuest", payload={"quest": quest, "next": quests.get("current")}))
        if not quests:
            remaining.pop("quests")

    history = remaining.get("history")
    if isinstance(history, (list, str)):
        remaining.pop("history")
        events = [history] if isinstance(history, str) else history
        ops.append(PatchOp(kind="appendHistory", payload=[str(e) for e in events]))

    if remaining:
        ops.append(PatchOp(kind="merge", payload=remaining))

    return ops


def deep_merge(target: dict[str, Any], source: Mapping[str, Any]) -> dict[str, Any]:
    """Recursive merge; anything that isn't a mapping on both sides (arrays included) overwrites."""

    for key, value in source.items():
        current = target.get(key)
        if isinstance(value, Mapping) and isinstance(current, dict):
            deep_merge(current, value)
        else:
            target[key] = copy.deepcopy(value)
    return target


def _requested_quantity(item: Mapping[str, Any]) -> int | None:
    raw = item.get("quantity")
    if raw is None:
        return 1
    try:
        return int(raw)
    except (TypeError, ValueError):
        return None


def _find_stack(inventory: list[dict[str, Any]], name: str) -> int | None:
    key = name.casefold()
    for idx, stack in enumerate(inventory):
        stack_name = stack.get("name")
        if isinstance(stack_name, str) and stack_name.casefold() == key:
            return idx
    return None


def _player_inventory(doc: dict[str, Any]) -> list[dict[str, Any]]:
    player = doc.setdefault("player", {})
    inventory = player.get("inventory")
    if not isinstance(inventory, list):
        inventory = []
        player["inventory"] = inventory
    return inventory


def _apply_inventory_add(doc: dict[str, Any], items: list[dict[str, Any]]) -> None:
    inventory = _player_inventory(doc)
    for item in items:
        name = item.get("name")
        qty = _requested_quantity(item)
        if not isinstance(name, str) or not name.strip() or qty is None:
            logger.warning("skipping malformed inventoryAdd entry: %r", item)
            continue
        if qty <= 0:
            continue

        idx = _find_stack(inventory, name)
        if idx is not None:
            inventory[idx]["quantity"] = int(inventory[idx].get("quantity") or 1) + qty
        else:
            inventory.append({**item, "quantity": qty})


def _apply_inventory_remove(doc: dict[str, Any], items: list[dict[str, Any]]) -> None:
    inventory = _player_inventory(doc)
    for item in items:
        name = item.get("name")
        qty = _requested_quantity(item)
        if not isinstance(name, str) or qty is None:
            logger.warning("skipping malformed inventoryRemove entry: %r", item)
            continue
        if qty <= 0:
            continue

        idx = _find_stack(inventory, name)
        if idx is None:
            continue
        have = int(inventory[idx].get("quantity") or 1)
        if have > qty:
            inventory[idx]["quantity"] = have - qty
        else:
            del inventory[idx]


def _apply_complete_quest(doc: dict[str, Any], payload: Mapping[str, Any]) -> None:
    quests = doc.setdefault("quests", {})
    completed = quests.get("completed")
    if not isinstance(completed, list):
        completed = []
        quests["completed"] = completed

    quest = payload["quest"]
    if quests.get("current") == quest:
        if quest not in completed:
            completed.append(quest)
        quests["current"] = payload.get("next")
    elif quest not in completed:
        completed.append(quest)


def _apply_append_history(doc: dict[str, Any], events: list[str]) -> None:
    history = doc.get("history")
    if not isinstance(history, list):
        history = []
    doc["history"] = [*history, *events]


def apply_op(doc: dict[str, Any], op: PatchOp) -> None:
    """Apply one op to a dict document in place."""

    if op.kind == "merge":
        deep_merge(doc, op.payload)
    elif op.kind == "inventoryAdd":
        _apply_inventory_add(doc, op.payload)
    elif op.kind == "inventoryRemove":
        _apply_inventory_remove(doc, op.payload)
    elif op.kind == "completeQuest":
        _apply_complete_quest(doc, op.payload)
    elif op.kind == "appendHistory":
        _apply_append_history(doc, op.payload)
    else:
        raise ValueError(f"Unknown patch op: {op.kind}")
