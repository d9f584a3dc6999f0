from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Literal

ImageFrequency = Literal["always", "major-scenes", "never"]

DEFAULT_HISTORY_TOKEN_BUDGET = 20_000
DEFAULT_SUMMARY_CHUNK_TOKENS = 2_500


@dataclass(frozen=True, slots=True)
class GameSettings:
    """Tunables for a game session.

    Every field can be overridden from env, see `settings_from_env`.
    """

    history_token_budget: int = DEFAULT_HISTORY_TOKEN_BUDGET
    summary_chunk_tokens: int = DEFAULT_SUMMARY_CHUNK_TOKENS
    # Applied to every validator/dialogue/narrator/summarizer/illustrator call.
    external_timeout_s: float = 60.0
    image_frequency: ImageFrequency = "major-scenes"
    max_action_length: int = 1_000


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be an integer (got {raw!r})") from e


def _float_env(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be a number (got {raw!r})") from e


def settings_from_env() -> GameSettings:
    frequency = os.environ.get("SOLO_RPG_IMAGE_FREQUENCY", "major-scenes")
    if frequency not in {"always", "major-scenes", "never"}:
        raise ValueError(f"SOLO_RPG_IMAGE_FREQUENCY must be always, major-scenes or never (got {frequency!r})")

    return GameSettings(
        history_token_budget=_int_env("SOLO_RPG_HISTORY_TOKEN_BUDGET", DEFAULT_HISTORY_TOKEN_BUDGET),
        summary_chunk_tokens=_int_env("SOLO_RPG_SUMMARY_CHUNK_TOKENS", DEFAULT_SUMMARY_CHUNK_TOKENS),
        external_timeout_s=_float_env("SOLO_RPG_EXTERNAL_TIMEOUT_S", 60.0),
        image_frequency=frequency,  # type: ignore[arg-type]
        max_action_length=_int_env("SOLO_RPG_MAX_ACTION_LENGTH", 1_000),
    )
