from __future__ import annotations

import math

TOKENS_PER_WORD = 1.33


def estimate_tokens(text: str) -> int:
    """Rough token count from whitespace-separated word count."""

    return math.ceil(len(text.split()) * TOKENS_PER_WORD)
