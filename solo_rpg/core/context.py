from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from typing import Any


@dataclass(frozen=True, slots=True)
class RenderedContext:
    """Final system context passed into the LLM agent."""

    system_prompt: str

    def as_messages(self) -> list[dict[str, str]]:
        return [{"role": "system", "content": self.system_prompt}]


@dataclass(frozen=True, slots=True)
class NarrationContext:
    """Everything the narrator sees besides the action itself.

    `recent_history` is the read-only keep side of the history window and
    `all_summaries` every compacted summary in creation order.
    """

    player_name: str
    player_rank: str
    player_level: int
    location: str
    time: str
    recent_history: str = ""
    all_summaries: str = ""
    current_quest: str | None = None
    npc_name: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def compose_context(*, base_prompt: str, sections: list[tuple[str, str]] | None = None) -> RenderedContext:
    parts: list[str] = [base_prompt.strip()]
    for title, body in sections or []:
        if body.strip():
            parts.append(f"{title}:\n{body.strip()}")
    system_prompt = "\n\n".join(p for p in parts if p.strip()).strip()
    return RenderedContext(system_prompt=system_prompt)


def render_narration_prompt(*, action: str | None, npc_dialogue: str | None, ctx: NarrationContext) -> str:
    """User prompt for a narration step.

    With no action this asks for a continuation (used after loading a save).
    """

    lines: list[str] = []
    if ctx.all_summaries.strip():
        lines.append("STORY SO FAR (summaries, oldest first):")
        lines.append(ctx.all_summaries.strip())
        lines.append("")
    if ctx.recent_history.strip():
        lines.append("RECENT HISTORY (chronological):")
        lines.append(ctx.recent_history.strip())
        lines.append("")

    lines.append(
        f"Player: {ctx.player_name} (rank {ctx.player_rank}, level {ctx.player_level}). "
        f"Location: {ctx.location}{', ' + ctx.time if ctx.time else ''}."
    )
    if ctx.current_quest:
        lines.append(f"Current quest: {ctx.current_quest}.")
    if npc_dialogue:
        speaker = ctx.npc_name or "The NPC"
        lines.append(f'{speaker} said: "{npc_dialogue}"')

    if action:
        lines.append(f"Jinwoo's action: {action}.")
        lines.append("Continue the story narration, focusing on the consequences of the above and the next developments.")
    else:
        lines.append("The player is resuming a saved game. Briefly re-establish the scene and continue the story.")

    return "\n".join(lines).strip()


def render_json_block(label: str, payload: Any) -> str:
    return f"{label}: {json.dumps(payload, ensure_ascii=False, sort_keys=True)}"
