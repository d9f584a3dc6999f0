from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import TypeVar

from solo_rpg.agents.base import GameServices
from solo_rpg.api.models import NarrationResult, SaveSnapshot, TurnPhase, TurnResult
from solo_rpg.config import GameSettings
from solo_rpg.core.context import NarrationContext
from solo_rpg.core.events import EventType, TurnEvent
from solo_rpg.errors import ExternalServiceFailure, TurnInProgressError, ValidationRejected
from solo_rpg.fsm import TurnFSM
from solo_rpg.game_setup import OPENING_IMAGE_PROMPT, initial_context
from solo_rpg.history import HistoryWindow
from solo_rpg.state_store import StateStore
from solo_rpg.turn_processing.validators import DEFAULT_PIPELINE, ValidationContext, ValidatorPipeline

logger = logging.getLogger(__name__)

T = TypeVar("T")

NARRATOR_ROLE = "Narrator"

BUSY_MESSAGE = "A turn is already in progress. Wait for it to finish."
FAILED_TURN_MESSAGE = "Something went wrong. Please try a different action."
FAILED_OPENING_MESSAGE = "Failed to generate opening sequence. Please try again."
FAILED_CONTINUATION_MESSAGE = "The game was loaded, but the story could not be resumed. Try an action."


class ActionOrchestrator:
    """Runs one session's turns against its StateStore and HistoryWindow.

    The FSM is the only concurrency guard: a submission that arrives while the machine is
    not idle is answered with a `busy` result. Turns are not transactional; effects applied
    before a failing step (NPC record changes) stay applied.
    """

    def __init__(
        self,
        *,
        services: GameServices,
        settings: GameSettings | None = None,
        store: StateStore | None = None,
        history: HistoryWindow | None = None,
        pipeline: ValidatorPipeline = DEFAULT_PIPELINE,
    ) -> None:
        self.services = services
        self.settings = settings or GameSettings()
        self.store = store or StateStore()
        self.history = history or HistoryWindow(
            token_budget=self.settings.history_token_budget,
            chunk_tokens=self.settings.summary_chunk_tokens,
        )
        self.pipeline = pipeline
        self.fsm = TurnFSM()
        self.initial_context = ""
        self.turn_id = 0

    @property
    def phase(self) -> TurnPhase:
        return self.fsm.phase

    # ------------------------------------------------------------------
    # External calls
    # ------------------------------------------------------------------

    async def _call(self, step: str, call: Callable[[], Awaitable[T]]) -> T:
        try:
            return await asyncio.wait_for(call(), timeout=self.settings.external_timeout_s)
        except Exception as e:
            raise ExternalServiceFailure(step, e) from e

    async def _summarize(self, chunks: list[str]) -> str:
        return await self._call("summarization", lambda: self.services.summarizer.summarize(chunks))

    def narration_context(self, *, npc_name: str | None = None) -> NarrationContext:
        doc = self.store.document
        return NarrationContext(
            player_name=doc.player.name,
            player_rank=doc.player.rank.value,
            player_level=doc.player.level,
            location=doc.world.location,
            time=doc.world.time,
            recent_history=self.history.render_recent(self.settings.history_token_budget),
            all_summaries=self.history.render_summaries(),
            current_quest=doc.quests.current,
            npc_name=npc_name,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def submit_action(self, action: str) -> TurnResult:
        """Run one full turn for a raw player action."""

        doc = self.store.document
        if not self.fsm.is_idle:
            return TurnResult(status="busy", action=action, message=BUSY_MESSAGE)

        self.turn_id += 1
        turn_id = self.turn_id
        events = [self._event("TURN_STARTED", turn_id, action=action)]
        npc_name: str | None = None
        npc_dialogue: str | None = None

        self.fsm.begin()
        try:
            try:
                self.pipeline.validate(
                    ctx=ValidationContext(action=action, max_length=self.settings.max_action_length),
                    state=doc,
                )
            except ValidationRejected as e:
                return self._rejected(action, e.reason, events, turn_id)

            verdict = await self._call(
                "validation",
                lambda: self.services.validator.validate(action, self.store.validation_context()),
            )
            if not verdict.valid:
                return self._rejected(action, verdict.reason, events, turn_id)

            if verdict.wants_npc_turn:
                self.fsm.start_npc_turn()
                npc_name = (verdict.npc_name or "").strip()
                npc_state = self.store.get_npc(npc_name).as_wire()
                scene = self.store.npc_scene_context()
                reply = await self._call(
                    "npc_turn",
                    lambda: self.services.dialogue.generate_dialogue(npc_name, action, npc_state, scene),
                )
                npc_dialogue = reply.dialogue or None
                events.append(self._event("NPC_RESPONDED", turn_id, npc=npc_name, changed=bool(reply.npc_changes)))
                if reply.npc_changes:
                    self.store.update_npc(npc_name, reply.npc_changes)

            self.fsm.start_narration()
            ctx = self.narration_context(npc_name=npc_name)
            narration = await self._call(
                "narration",
                lambda: self.services.narrator.generate_narration(action, npc_dialogue, ctx),
            )
            events.append(self._event("NARRATION_GENERATED", turn_id, has_changes=narration.state_changes is not None))

            self.fsm.start_applying()
            state_changed, compacted = await self._apply(action, narration, events, turn_id)
            image_url = await self._maybe_illustrate(
                prompt=self._scene_image_prompt(narration.narration),
                wanted=verdict.new_scene or self.settings.image_frequency == "always",
                events=events,
                turn_id=turn_id,
            )
            self.fsm.complete()
        except asyncio.CancelledError:
            self._abandon(turn_id)
            raise
        except Exception as e:
            return self._failed(
                e,
                action=action,
                message=FAILED_TURN_MESSAGE,
                events=events,
                turn_id=turn_id,
                npc_name=npc_name,
                npc_dialogue=npc_dialogue,
            )

        events.append(self._event("TURN_ENDED", turn_id))
        return TurnResult(
            status="ok",
            action=action,
            npc_name=npc_name,
            npc_dialogue=npc_dialogue,
            narration=narration.narration,
            image_url=image_url,
            state_changed=state_changed,
            compacted=compacted,
            state=self.store.document,
            events=events,
        )

    async def start_new_game(self) -> TurnResult:
        """Reset the document and history, then narrate the opening scene."""

        if not self.fsm.is_idle:
            return TurnResult(status="busy", message=BUSY_MESSAGE)

        self.store.reset()
        self.history.clear()
        self.initial_context = initial_context()
        self.turn_id = 0
        events = [self._event("TURN_STARTED", 0, opening=True)]

        self.fsm.begin_narration()
        try:
            opening = await self._call(
                "opening",
                lambda: self.services.narrator.generate_opening(self.initial_context),
            )
            events.append(self._event("NARRATION_GENERATED", 0, has_changes=opening.state_changes is not None))

            self.fsm.start_applying()
            state_changed = False
            if opening.state_changes is not None:
                applied = self.store.update(opening.state_changes)
                state_changed = applied.applied
                events.append(self._event("STATE_APPLIED", 0, ops=applied.ops, applied=applied.applied))
            self.history.append_turn(NARRATOR_ROLE, opening.narration)

            image_url = await self._maybe_illustrate(
                prompt=OPENING_IMAGE_PROMPT,
                wanted=True,
                events=events,
                turn_id=0,
            )
            self.fsm.complete()
        except asyncio.CancelledError:
            self._abandon(0)
            raise
        except Exception as e:
            return self._failed(e, action=None, message=FAILED_OPENING_MESSAGE, events=events, turn_id=0)

        events.append(self._event("TURN_ENDED", 0))
        return TurnResult(
            status="ok",
            narration=opening.narration,
            image_url=image_url,
            state_changed=state_changed,
            state=self.store.document,
            events=events,
        )

    def save_snapshot(self) -> SaveSnapshot:
        return SaveSnapshot(
            state=self.store.document,
            initial_context=self.initial_context,
            timestamp=datetime.now(tz=UTC),
            conversation=self.history.to_snapshot(),
        )

    def load_snapshot(self, snapshot: SaveSnapshot) -> None:
        """Replace the document and history wholesale."""

        if not self.fsm.is_idle:
            raise TurnInProgressError("Cannot load a save while a turn is in progress")

        self.store.load_document(snapshot.state)
        self.history.load_snapshot(snapshot.conversation)
        self.initial_context = snapshot.initial_context or initial_context()
        self.turn_id = 0

    async def continue_after_load(self) -> TurnResult:
        """Narrate a short re-entry into the loaded story. Never changes state."""

        if not self.fsm.is_idle:
            return TurnResult(status="busy", message=BUSY_MESSAGE)

        events = [self._event("TURN_STARTED", self.turn_id, continuation=True)]
        self.fsm.begin_narration()
        try:
            ctx = self.narration_context()
            result = await self._call("continuation", lambda: self.services.narrator.generate_continuation(ctx))
            narration = result.narration or "You continue your journey..."
            events.append(self._event("NARRATION_GENERATED", self.turn_id, has_changes=False))
            self.fsm.start_applying()
            self.fsm.complete()
        except asyncio.CancelledError:
            self._abandon(self.turn_id)
            raise
        except Exception as e:
            return self._failed(
                e, action=None, message=FAILED_CONTINUATION_MESSAGE, events=events, turn_id=self.turn_id
            )

        events.append(self._event("TURN_ENDED", self.turn_id))
        return TurnResult(status="ok", narration=narration, state=self.store.document, events=events)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _apply(
        self,
        action: str,
        narration: NarrationResult,
        events: list[TurnEvent],
        turn_id: int,
    ) -> tuple[bool, int]:
        if narration.state_changes is None:
            return False, 0

        applied = self.store.update(narration.state_changes)
        events.append(
            self._event("STATE_APPLIED", turn_id, ops=applied.ops, applied=applied.applied, error=applied.error)
        )

        self.history.append_turn(self.store.document.player.name, action)
        self.history.append_turn(NARRATOR_ROLE, narration.narration)
        summaries = await self.history.compact_if_needed(self._summarize)
        if summaries:
            events.append(
                self._event(
                    "HISTORY_COMPACTED",
                    turn_id,
                    summaries=len(summaries),
                    degraded=sum(1 for s in summaries if s.degraded),
                )
            )
        return applied.applied and bool(applied.ops), len(summaries)

    def _scene_image_prompt(self, narration: str) -> str:
        location = self.store.document.world.location
        return f"A {location} scene after: {narration[:100]}..."

    async def _maybe_illustrate(
        self,
        *,
        prompt: str,
        wanted: bool,
        events: list[TurnEvent],
        turn_id: int,
    ) -> str | None:
        illustrator = self.services.illustrator
        if illustrator is None or not wanted or self.settings.image_frequency == "never":
            return None

        try:
            url = await self._call("illustration", lambda: illustrator.illustrate(prompt))
        except ExternalServiceFailure as e:
            # Illustration failures never fail the turn.
            logger.warning("illustration skipped: %s", e)
            return None

        if url:
            events.append(self._event("SCENE_ILLUSTRATED", turn_id))
        return url

    def _rejected(self, action: str, reason: str, events: list[TurnEvent], turn_id: int) -> TurnResult:
        self.fsm.reject()
        events.append(self._event("ACTION_REJECTED", turn_id, reason=reason))
        events.append(self._event("TURN_ENDED", turn_id))
        return TurnResult(
            status="rejected",
            action=action,
            message=f"You can't do that. {reason.strip() or 'Try something else.'}",
            state=self.store.document,
            events=events,
        )

    def _failed(
        self,
        error: Exception,
        *,
        action: str | None,
        message: str,
        events: list[TurnEvent],
        turn_id: int,
        npc_name: str | None = None,
        npc_dialogue: str | None = None,
    ) -> TurnResult:
        step = error.step if isinstance(error, ExternalServiceFailure) else self.fsm.phase.value
        if isinstance(error, ExternalServiceFailure):
            logger.warning("turn %d failed during %s: %s", turn_id, step, error)
        else:
            logger.exception("turn %d failed during %s", turn_id, step)

        if self.fsm.current_state != self.fsm.error:
            self.fsm.fail()
        self.fsm.recover()

        events.append(self._event("TURN_FAILED", turn_id, step=step, error=str(error)))
        return TurnResult(
            status="failed",
            action=action,
            message=message,
            npc_name=npc_name,
            npc_dialogue=npc_dialogue,
            state=self.store.document if self.store.initialized else None,
            events=events,
        )

    def _abandon(self, turn_id: int) -> None:
        if self.fsm.is_idle:
            return
        logger.warning("turn %d cancelled during %s", turn_id, self.fsm.phase.value)
        if self.fsm.current_state != self.fsm.error:
            self.fsm.fail()
        self.fsm.recover()

    @staticmethod
    def _event(type: EventType, turn_id: int, **payload: object) -> TurnEvent:
        return TurnEvent.now(type=type, turn_id=turn_id, payload=dict(payload))
