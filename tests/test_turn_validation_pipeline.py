from __future__ import annotations

import pytest

from solo_rpg.errors import ValidationRejected
from solo_rpg.game_setup import build_initial_state
from solo_rpg.turn_processing.validators import DEFAULT_PIPELINE, ValidationContext


def test_blank_action_is_rejected() -> None:
    ctx = ValidationContext(action=" \n ", max_length=100)

    with pytest.raises(ValidationRejected) as e:
        DEFAULT_PIPELINE.validate(ctx=ctx, state=build_initial_state())

    assert e.value.reason == "Describe what you want to do."


def test_length_limit_is_inclusive() -> None:
    state = build_initial_state()

    DEFAULT_PIPELINE.validate(ctx=ValidationContext(action="x" * 10, max_length=10), state=state)
    with pytest.raises(ValidationRejected) as e:
        DEFAULT_PIPELINE.validate(ctx=ValidationContext(action="x" * 11, max_length=10), state=state)

    assert "max 10 characters" in e.value.reason


def test_rejection_is_a_value_error() -> None:
    with pytest.raises(ValueError):
        DEFAULT_PIPELINE.validate(ctx=ValidationContext(action="", max_length=10), state=build_initial_state())
