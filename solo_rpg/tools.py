"""Function-call tools a narrator may use to change the game state.

The same tools are exposed three ways:
- `TOOL_DEFINITIONS`: JSON-schema style declarations for function-calling models;
- `changes_from_tool_calls`: fold a batch of calls into one change object for `StateStore.update`;
- `ToolExecutor`: run a single call directly against a store (debug endpoint, tests).
"""
from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from solo_rpg.core.patches import PatchOp, deep_merge
from solo_rpg.state_store import StateStore

logger = logging.getLogger(__name__)

_ITEM_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "name": {"type": "string", "description": "Item name"},
        "quantity": {"type": "integer", "description": "Quantity to add or remove"},
        "type": {"type": "string", "description": "Item type (weapon, consumable, etc.)"},
        "description": {"type": "string", "description": "Item description"},
    },
    "required": ["name", "quantity"],
}

TOOL_DEFINITIONS: list[dict[str, Any]] = [
    {
        "name": "update_state",
        "description": "Update the game state with specific changes",
        "parameters": {
            "type": "object",
            "properties": {"changes": {"type": "object", "description": "Changes to apply to the game state"}},
            "required": ["changes"],
        },
    },
    {
        "name": "update_inventory",
        "description": "Add or remove items from the player inventory",
        "parameters": {
            "type": "object",
            "properties": {
                "action": {"type": "string", "enum": ["add", "remove"]},
                "items": {"type": "array", "items": _ITEM_SCHEMA},
            },
            "required": ["action", "items"],
        },
    },
    {
        "name": "complete_quest",
        "description": "Mark a quest as completed and optionally start a new one",
        "parameters": {
            "type": "object",
            "properties": {
                "completedQuest": {"type": "string"},
                "newQuest": {"type": "string"},
            },
            "required": ["completedQuest"],
        },
    },
    {
        "name": "update_character_profile",
        "description": "Update the player's rank, level, vitals, gold, inventory or skills",
        "parameters": {
            "type": "object",
            "properties": {
                "rank": {"type": "string", "enum": ["E", "D", "C", "B", "A", "S"]},
                "level": {"type": "integer"},
                "hp": {"type": "integer"},
                "mp": {"type": "integer"},
                "gold": {"type": "integer"},
                "inventory": {"type": "array", "items": _ITEM_SCHEMA},
                "skills": {"type": "array", "items": {"type": "string"}},
            },
        },
    },
    {
        "name": "log_event",
        "description": "Log an important event to the game history",
        "parameters": {
            "type": "object",
            "properties": {"event": {"type": "string"}},
            "required": ["event"],
        },
    },
]

TOOL_NAMES = frozenset(t["name"] for t in TOOL_DEFINITIONS)

# update_character_profile argument -> player field
_PROFILE_FIELDS = {"rank": "rank", "level": "level", "hp": "HP", "mp": "MP", "gold": "gold"}


def _profile_changes(params: Mapping[str, Any]) -> dict[str, Any]:
    player: dict[str, Any] = {}
    for arg, field_name in _PROFILE_FIELDS.items():
        if params.get(arg) is not None:
            player[field_name] = params[arg]
    for passthrough in ("inventory", "skills"):
        if params.get(passthrough) is not None:
            player[passthrough] = params[passthrough]
    return player


def changes_from_tool_calls(calls: Iterable[Mapping[str, Any]]) -> dict[str, Any]:
    """Fold tool calls into a single change object, in call order."""

    combined: dict[str, Any] = {}
    for call in calls:
        name = call.get("name")
        params = call.get("parameters") or call.get("arguments") or {}
        if not isinstance(params, Mapping):
            logger.warning("ignoring tool call %r with non-object parameters", name)
            continue

        if name == "update_state" and isinstance(params.get("changes"), Mapping):
            deep_merge(combined, params["changes"])

        elif name == "update_character_profile":
            combined.setdefault("player", {}).update(_profile_changes(params))

        elif name == "update_inventory" and isinstance(params.get("items"), list):
            key = {"add": "inventoryAdd", "remove": "inventoryRemove"}.get(str(params.get("action")))
            if key is None:
                logger.warning("ignoring update_inventory with action=%r", params.get("action"))
                continue
            player = combined.setdefault("player", {})
            player[key] = [*player.get(key, []), *params["items"]]

        elif name == "complete_quest" and params.get("completedQuest"):
            quests = combined.setdefault("quests", {})
            quests["completeQuest"] = params["completedQuest"]
            if params.get("newQuest"):
                quests["current"] = params["newQuest"]

        elif name == "log_event" and params.get("event"):
            combined["history"] = [*combined.get("history", []), str(params["event"])]

        else:
            logger.warning("ignoring unknown or incomplete tool call %r", name)

    return combined


@dataclass(frozen=True, slots=True)
class ToolResult:
    success: bool
    message: str


class ToolExecutor:
    def __init__(self, store: StateStore) -> None:
        self.store = store

    def execute(self, name: str, parameters: Mapping[str, Any]) -> ToolResult:
        if name == "update_state":
            changes = parameters.get("changes")
            if not isinstance(changes, Mapping):
                return ToolResult(False, "Failed to update state: 'changes' must be an object")
            return self._apply(changes, ok="State updated successfully", failed="Failed to update state")

        if name == "update_inventory":
            action = parameters.get("action")
            items = parameters.get("items")
            if action not in {"add", "remove"}:
                return ToolResult(False, f"Failed to update inventory: Invalid action: {action}")
            if not isinstance(items, list):
                return ToolResult(False, "Failed to update inventory: 'items' must be an array")
            op = PatchOp.inventory_add(items) if action == "add" else PatchOp.inventory_remove(items)
            verb = "added to" if action == "add" else "removed from"
            return self._apply([op], ok=f"Items {verb} inventory", failed="Failed to update inventory")

        if name == "complete_quest":
            quest = parameters.get("completedQuest")
            if not isinstance(quest, str) or not quest.strip():
                return ToolResult(False, "Failed to complete quest: 'completedQuest' is required")
            changes: dict[str, Any] = {"quests": {"completeQuest": quest}}
            if parameters.get("newQuest"):
                changes["quests"]["current"] = parameters["newQuest"]
            return self._apply(changes, ok=f'Quest "{quest}" completed', failed="Failed to complete quest")

        if name == "update_character_profile":
            player = _profile_changes(parameters)
            if not player:
                return ToolResult(False, "Failed to update character profile: no fields given")
            return self._apply(
                {"player": player}, ok="Character profile updated", failed="Failed to update character profile"
            )

        if name == "log_event":
            event = parameters.get("event")
            if not isinstance(event, str) or not event.strip():
                return ToolResult(False, "Failed to log event: 'event' is required")
            return self._apply([PatchOp.append_history([event])], ok="Event logged to history", failed="Failed to log event")

        raise ValueError(f"Unknown function: {name}")

    def _apply(self, patch: Any, *, ok: str, failed: str) -> ToolResult:
        applied = self.store.update(patch)
        if not applied.applied:
            return ToolResult(False, f"{failed}: {applied.error}")
        return ToolResult(True, ok)
