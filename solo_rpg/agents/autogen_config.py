from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Literal

from autogen import LLMConfig

ModelTier = Literal["narrator", "npc", "utility"]

# Env var overriding the model for one tier; OPENAI_MODEL is the shared fallback.
_TIER_ENV: dict[ModelTier, str] = {
    "narrator": "OPENAI_NARRATOR_MODEL",
    "npc": "OPENAI_NPC_MODEL",
    "utility": "OPENAI_UTILITY_MODEL",
}


@dataclass(frozen=True, slots=True)
class OpenAICompatibleSettings:
    model: str
    base_url: str | None
    api_key: str | None


def model_for_tier(tier: ModelTier, *, default_model: str = "gpt-4o-mini") -> str:
    return os.environ.get(_TIER_ENV[tier]) or os.environ.get("OPENAI_MODEL", default_model)


def settings_from_env(*, default_model: str) -> OpenAICompatibleSettings:
    return OpenAICompatibleSettings(
        model=os.environ.get("OPENAI_MODEL", default_model),
        # For Ollama, typically http://127.0.0.1:11434/v1
        base_url=os.environ.get("OPENAI_BASE_URL"),
        api_key=os.environ.get("OPENAI_API_KEY"),
    )


def llm_config_from_env(*, model: str) -> LLMConfig:
    s = settings_from_env(default_model=model)

    # Many OpenAI-compatible servers ignore the key but some SDKs require it.
    api_key = s.api_key or ("ollama" if s.base_url else None)

    if not api_key:
        raise RuntimeError(
            "Set OPENAI_API_KEY for hosted OpenAI, or set OPENAI_BASE_URL for a local OpenAI-compatible server"
        )

    # The tier model wins over OPENAI_MODEL; transport settings are shared.
    config: dict[str, Any] = {"model": model, "api_key": api_key}
    if s.base_url:
        config["base_url"] = s.base_url

    return LLMConfig(config_list=[config])
