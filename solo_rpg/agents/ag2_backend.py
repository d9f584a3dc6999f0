from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

from autogen import ConversableAgent, LLMConfig

from solo_rpg.agents.autogen_config import llm_config_from_env
from solo_rpg.agents.base import AgentAction
from solo_rpg.agents.json_schema import JsonSchema
from solo_rpg.core.context import RenderedContext

logger = logging.getLogger(__name__)


def _last_reply(messages: object) -> str:
    if not isinstance(messages, list):
        return ""

    for msg in reversed(messages):
        if isinstance(msg, dict):
            content = msg.get("content")
            if isinstance(content, str) and content.strip():
                return content.strip()
    return ""


def _response_format(schema: JsonSchema) -> dict[str, Any]:
    # OpenAI-style structured outputs; AG2 forwards unknown run() kwargs to the client.
    return {
        "type": "json_schema",
        "json_schema": {"name": schema.name, "schema": schema.schema, "strict": schema.strict},
    }


def _run_single_turn(
    *,
    name: str,
    system_prompt: str,
    llm_config: LLMConfig,
    prompt: str,
    extra: dict[str, Any],
) -> str:
    agent = ConversableAgent(
        name=name,
        system_message=system_prompt,
        llm_config=llm_config,
        human_input_mode="NEVER",
    )
    result = agent.run(message=prompt, max_turns=1, **extra)
    result.process()

    text = _last_reply(list(result.messages))
    if not text and isinstance(result.summary, str):
        text = result.summary.strip()
    return text


@dataclass(slots=True)
class Ag2ChatAgent:
    """Single-turn AG2 chat agent for one model tier.

    The AG2 run is blocking, so it executes in a worker thread; the caller's
    `asyncio.wait_for` timeout then bounds the await.

    Environment variables supported:
    - OPENAI_MODEL (or the per-tier OPENAI_NARRATOR_MODEL / OPENAI_NPC_MODEL / OPENAI_UTILITY_MODEL)
    - OPENAI_API_KEY (optional if OPENAI_BASE_URL is set)
    - OPENAI_BASE_URL (for OpenAI-compatible servers like Ollama, e.g. http://127.0.0.1:11434/v1)
    """

    name: str
    model: str

    async def propose_action(
        self,
        *,
        prompt: str,
        ctx: RenderedContext,
        structured_output: JsonSchema | None = None,
    ) -> AgentAction:
        extra = {"response_format": _response_format(structured_output)} if structured_output is not None else {}
        logger.debug("%s -> %s (structured=%s)", self.name, self.model, structured_output is not None)

        text = await asyncio.to_thread(
            _run_single_turn,
            name=self.name,
            system_prompt=ctx.system_prompt,
            llm_config=llm_config_from_env(model=self.model),
            prompt=prompt,
            extra=extra,
        )

        metadata: dict[str, Any] = {"model": self.model}
        if structured_output is not None:
            metadata["structured"] = True
        return AgentAction(kind="chat", content=text, metadata=metadata)
