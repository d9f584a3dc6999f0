from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError

from solo_rpg.api.models import GameState, NpcRecord
from solo_rpg.core.patches import PatchOp, apply_op, split_changes
from solo_rpg.errors import UninitializedStoreError
from solo_rpg.game_setup import build_initial_state

logger = logging.getLogger(__name__)

_NPC_ALIASES = {"last_seen": "lastSeen", "knows_about_system": "knowsAboutSystem"}


@dataclass(frozen=True, slots=True)
class AppliedPatch:
    """Result of applying a patch.

    - `applied`: False when the merged document failed validation and was discarded.
    - `ops`: op kinds in the order they ran.
    """

    applied: bool
    ops: list[str] = field(default_factory=list)
    error: str | None = None


class StateStore:
    """Single owner of the game-state document.

    Updates are copy-on-write: the current document is dumped to a fresh dict, ops are
    applied to that dict, and the result is validated into a new `GameState` before it
    replaces the old one. Nothing the caller passes in is ever stored by reference.
    """

    def __init__(self, document: GameState | None = None) -> None:
        self._doc = document.model_copy(deep=True) if document is not None else None

    @property
    def initialized(self) -> bool:
        return self._doc is not None

    def _require(self) -> GameState:
        if self._doc is None:
            raise UninitializedStoreError("State store has no document; call reset() or load_document() first")
        return self._doc

    @property
    def document(self) -> GameState:
        """Deep copy for readers (renderers, prompt builders)."""

        return self._require().model_copy(deep=True)

    def reset(self) -> GameState:
        self._doc = build_initial_state()
        logger.info("state reset to initial document")
        return self.document

    def load_document(self, document: GameState) -> None:
        self._doc = document.model_copy(deep=True)
        logger.info("state replaced from snapshot (player=%s)", self._doc.player.name)

    def update(self, patch: Mapping[str, Any] | Sequence[PatchOp]) -> AppliedPatch:
        current = self._require()
        ops = split_changes(patch) if isinstance(patch, Mapping) else list(patch)
        kinds = [op.kind for op in ops]
        if not ops:
            logger.info("state updated (ops=[])")
            return AppliedPatch(applied=True, ops=[])

        working = current.model_dump(mode="json", by_alias=True)
        for op in ops:
            apply_op(working, op)

        try:
            updated = GameState.model_validate(working)
        except ValidationError as e:
            logger.warning("state patch rejected (ops=%s): %s", kinds, e)
            return AppliedPatch(applied=False, ops=kinds, error=str(e))

        self._doc = updated
        logger.info("state updated (ops=%s)", kinds)
        return AppliedPatch(applied=True, ops=kinds)

    def get_npc(self, name: str) -> NpcRecord:
        record = self._require().npcs.get(name)
        return record.model_copy(deep=True) if record is not None else NpcRecord()

    def update_npc(self, name: str, changes: Mapping[str, Any]) -> NpcRecord:
        """Create the NPC on first reference, then shallow-merge `changes` into it."""

        doc = self._require()
        existing = doc.npcs.get(name)
        merged = existing.as_wire() if existing is not None else {}
        for key, value in changes.items():
            merged[_NPC_ALIASES.get(key, key)] = value

        try:
            record = NpcRecord.model_validate(merged)
        except ValidationError as e:
            logger.warning("npc update for %s rejected: %s", name, e)
            return existing.model_copy(deep=True) if existing is not None else NpcRecord()

        npcs = dict(doc.npcs)
        npcs[name] = record
        self._doc = doc.model_copy(update={"npcs": npcs})
        logger.info("npc %s updated (keys=%s)", name, sorted(changes))
        return record.model_copy(deep=True)

    def scene_context(self) -> dict[str, Any]:
        doc = self._require()
        return {"location": doc.world.location, "time": doc.world.time}

    def validation_context(self) -> dict[str, Any]:
        doc = self._require()
        return {
            "location": doc.world.location,
            "playerRank": doc.player.rank.value,
            "playerLevel": doc.player.level,
            "inventory": [item.name for item in doc.player.inventory],
        }

    def npc_scene_context(self) -> dict[str, Any]:
        doc = self._require()
        return {
            "location": doc.world.location,
            "playerRank": doc.player.rank.value,
            "currentQuest": doc.quests.current,
        }
