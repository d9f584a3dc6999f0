from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

from solo_rpg.api.models import DialogueResult, NarrationResult, ValidationVerdict
from solo_rpg.core.context import NarrationContext, RenderedContext


@dataclass(frozen=True, slots=True)
class AgentAction:
    kind: str
    content: str
    metadata: dict[str, Any] = field(default_factory=dict)


class Agent(Protocol):
    name: str

    async def propose_action(self, *, prompt: str, ctx: RenderedContext) -> AgentAction:  # pragma: no cover
        ...


class ActionValidator(Protocol):
    async def validate(self, action: str, context: dict[str, Any]) -> ValidationVerdict:  # pragma: no cover
        ...


class DialogueGenerator(Protocol):
    async def generate_dialogue(
        self,
        npc_name: str,
        action: str,
        npc_state: dict[str, Any],
        scene_context: dict[str, Any],
    ) -> DialogueResult:  # pragma: no cover
        ...


class Narrator(Protocol):
    async def generate_narration(
        self,
        action: str,
        npc_dialogue: str | None,
        context: NarrationContext,
    ) -> NarrationResult:  # pragma: no cover
        ...

    async def generate_opening(self, initial_context: str) -> NarrationResult:  # pragma: no cover
        ...

    async def generate_continuation(self, context: NarrationContext) -> NarrationResult:  # pragma: no cover
        ...


class Summarizer(Protocol):
    async def summarize(self, chunks: list[str]) -> str:  # pragma: no cover
        ...


class Illustrator(Protocol):
    async def illustrate(self, prompt: str) -> str | None:  # pragma: no cover
        ...


@dataclass(frozen=True, slots=True)
class GameServices:
    """The external capabilities a session talks to."""

    validator: ActionValidator
    dialogue: DialogueGenerator
    narrator: Narrator
    summarizer: Summarizer
    illustrator: Illustrator | None = None
