"""LLM-backed implementations of the validator, NPC dialogue, narrator and summarizer.

Each adapter builds a prompt, asks an `Agent` (structured output when supported), parses
the reply and retries on unparseable output. Failures that survive the retries raise
`GenerationError`; the orchestrator turns those into a failed turn.
"""
from __future__ import annotations

import json
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from pydantic import ValidationError

from solo_rpg.agents.base import Agent, AgentAction
from solo_rpg.agents.json_schema import DIALOGUE_SCHEMA, NARRATION_SCHEMA, VALIDATION_SCHEMA, JsonSchema
from solo_rpg.api.models import DialogueResult, NarrationResult, ValidationVerdict
from solo_rpg.core.context import NarrationContext, RenderedContext, compose_context, render_json_block, render_narration_prompt
from solo_rpg.core.patches import deep_merge
from solo_rpg.prompts import load_prompt
from solo_rpg.tools import changes_from_tool_calls

T = TypeVar("T")


class GenerationError(RuntimeError):
    pass


def _strip_fences(text: str) -> str:
    stripped = text.strip()
    if stripped.startswith("```"):
        stripped = stripped.split("\n", 1)[1] if "\n" in stripped else ""
        stripped = stripped.rsplit("```", 1)[0]
    return stripped.strip()


def parse_json_object(text: str) -> dict[str, Any]:
    try:
        data = json.loads(_strip_fences(text))
    except json.JSONDecodeError as e:
        raise GenerationError(f"Invalid JSON: {e}") from e

    if not isinstance(data, dict):
        raise GenerationError("Expected a JSON object")
    return data


def parse_verdict(text: str) -> ValidationVerdict:
    """Parse a validator reply.

    Non-JSON prose is treated as a refusal whose reason is the prose itself.
    """

    body = _strip_fences(text)
    if not body.startswith("{"):
        return ValidationVerdict(valid=False, reason=body or "Invalid action or response format.")

    try:
        data = parse_json_object(body)
    except GenerationError:
        return ValidationVerdict(valid=False, reason=body)

    if isinstance(data.get("npcName"), str) and not data["npcName"].strip():
        data["npcName"] = None
    try:
        return ValidationVerdict.model_validate(data)
    except ValidationError as e:
        raise GenerationError(f"Malformed verdict: {e}") from e


def parse_dialogue(text: str) -> DialogueResult:
    body = _strip_fences(text)
    if body.startswith("{"):
        data = parse_json_object(body)
        try:
            return DialogueResult.model_validate(data)
        except ValidationError as e:
            raise GenerationError(f"Malformed dialogue: {e}") from e
    if not body:
        raise GenerationError("Empty dialogue")
    return DialogueResult(dialogue=body)


def parse_narration(text: str) -> NarrationResult:
    """Parse narrator output; `toolCalls` are folded into `stateChanges`."""

    body = _strip_fences(text)
    if not body.startswith("{"):
        if not body:
            raise GenerationError("Empty narration")
        return NarrationResult(narration=body.split("```tool_code")[0].strip())

    data = parse_json_object(body)
    narration = data.get("narration")
    if not isinstance(narration, str) or not narration.strip():
        raise GenerationError("Missing/invalid 'narration' field")

    present = isinstance(data.get("stateChanges"), dict)
    changes = data["stateChanges"] if present else {}
    calls = data.get("toolCalls")
    if isinstance(calls, list):
        deep_merge(changes, changes_from_tool_calls(c for c in calls if isinstance(c, dict)))

    return NarrationResult(
        narration=narration.split("```tool_code")[0].strip(),
        state_changes=changes if present or changes else None,
    )


async def _ask(
    *,
    agent: Agent,
    prompt: str,
    ctx: RenderedContext,
    schema: JsonSchema | None,
    parse: Callable[[str], T],
    max_attempts: int,
) -> T:
    last_err: Exception | None = None
    for _ in range(max_attempts):
        # If the agent supports structured output, pass schema; otherwise rely on prompt+parser.
        propose = getattr(agent, "propose_action")
        action: AgentAction
        if schema is None:
            action = await propose(prompt=prompt, ctx=ctx)
        else:
            try:
                action = await propose(prompt=prompt, ctx=ctx, structured_output=schema)  # type: ignore[arg-type]
            except TypeError:
                action = await propose(prompt=prompt, ctx=ctx)  # type: ignore[misc]

        try:
            return parse(action.content)
        except GenerationError as e:
            last_err = e
            continue

    raise GenerationError(f"No usable reply from {agent.name} after {max_attempts} attempts: {last_err}")


@dataclass(slots=True)
class AgentValidator:
    agent: Agent
    max_attempts: int = 2

    async def validate(self, action: str, context: dict[str, Any]) -> ValidationVerdict:
        prompt = (
            "Validate the player's action given the context.\n"
            f'Action: "{action}"\n'
            f"{render_json_block('Context', context)}\n"
            "Respond with a JSON object with keys: valid (boolean), reason (string), involveNPC (boolean), "
            "npcName (string, empty if none), newScene (boolean, true if the action leads Sung Jinwoo to a new "
            "physical scene, e.g. hospital -> home)."
        )
        ctx = compose_context(base_prompt=load_prompt("utility.txt"))
        return await _ask(
            agent=self.agent, prompt=prompt, ctx=ctx, schema=VALIDATION_SCHEMA, parse=parse_verdict, max_attempts=self.max_attempts
        )


@dataclass(slots=True)
class AgentDialogueGenerator:
    agent: Agent
    max_attempts: int = 2

    async def generate_dialogue(
        self,
        npc_name: str,
        action: str,
        npc_state: dict[str, Any],
        scene_context: dict[str, Any],
    ) -> DialogueResult:
        facts: list[str] = []
        if npc_state.get("relationship"):
            facts.append(f'{npc_name}\'s attitude toward Jinwoo is "{npc_state["relationship"]}".')
        if npc_state.get("knowsAboutSystem") is False:
            facts.append(f"{npc_name} is not aware of Jinwoo's mysterious System interface.")

        prompt = "\n".join(
            [
                *facts,
                render_json_block("Scene", scene_context),
                f"Jinwoo's action: {action}.",
                f"Reply as JSON: dialogue (only {npc_name}'s spoken words, in quotes) and optionally "
                f"npcChanges (flat object of fields that changed for {npc_name}, e.g. relationship, lastSeen).",
            ]
        )
        ctx = compose_context(
            base_prompt=load_prompt("npc.txt"),
            sections=[("NPC RECORD", json.dumps({"name": npc_name, **npc_state}, ensure_ascii=False))],
        )
        return await _ask(
            agent=self.agent, prompt=prompt, ctx=ctx, schema=DIALOGUE_SCHEMA, parse=parse_dialogue, max_attempts=self.max_attempts
        )


_NARRATION_FORMAT = (
    "\n\nReply as JSON: narration (the prose) and, when the game state changed, stateChanges "
    "(a partial game-state object; use player.inventoryAdd / player.inventoryRemove for items, "
    "quests.completeQuest to finish a quest, history for notable events) or toolCalls."
)


@dataclass(slots=True)
class AgentNarrator:
    agent: Agent
    max_attempts: int = 2

    def _ctx(self) -> RenderedContext:
        return compose_context(base_prompt=load_prompt("narrator.txt"))

    async def _narrate(self, prompt: str) -> NarrationResult:
        return await _ask(
            agent=self.agent,
            prompt=prompt + _NARRATION_FORMAT,
            ctx=self._ctx(),
            schema=NARRATION_SCHEMA,
            parse=parse_narration,
            max_attempts=self.max_attempts,
        )

    async def generate_narration(self, action: str, npc_dialogue: str | None, context: NarrationContext) -> NarrationResult:
        return await self._narrate(render_narration_prompt(action=action, npc_dialogue=npc_dialogue, ctx=context))

    async def generate_opening(self, initial_context: str) -> NarrationResult:
        if initial_context.strip():
            prompt = f"{initial_context.strip()} Narrate the opening scene, in a way that gives the player ideas of potential actions."
        else:
            prompt = (
                "The story begins as Sung Jinwoo awakens in a hospital after surviving a deadly double dungeon "
                "incident. Narrate the opening scene in detail."
            )
        return await self._narrate(prompt)

    async def generate_continuation(self, context: NarrationContext) -> NarrationResult:
        return await self._narrate(render_narration_prompt(action=None, npc_dialogue=None, ctx=context))


def _parse_summary(text: str) -> str:
    body = text.strip()
    if not body:
        raise GenerationError("Empty summary")
    return body


@dataclass(slots=True)
class AgentSummarizer:
    agent: Agent
    max_words: int = 50

    async def summarize(self, chunks: list[str]) -> str:
        prompt = f"Summarize the following under {self.max_words} words:\n" + "\n".join(chunks)
        ctx = compose_context(base_prompt=load_prompt("utility.txt"))
        # Single attempt: HistoryWindow owns the retry/fallback policy for summaries.
        return await _ask(agent=self.agent, prompt=prompt, ctx=ctx, schema=None, parse=_parse_summary, max_attempts=1)
