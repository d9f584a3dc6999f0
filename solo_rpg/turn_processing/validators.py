from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass

from solo_rpg.api.models import GameState
from solo_rpg.errors import ValidationRejected


@dataclass(frozen=True, slots=True)
class ValidationContext:
    """Inputs available to local validators.

    Keep this tight and serializable-ish so we can safely log it.
    """

    action: str
    max_length: int


class TurnValidator(ABC):
    """A small, composable validation unit for an incoming action."""

    @abstractmethod
    def validate(self, *, ctx: ValidationContext, state: GameState) -> None:
        raise NotImplementedError


@dataclass(frozen=True, slots=True)
class NonEmptyActionValidator(TurnValidator):
    def validate(self, *, ctx: ValidationContext, state: GameState) -> None:
        if not ctx.action.strip():
            raise ValidationRejected("Describe what you want to do.")


@dataclass(frozen=True, slots=True)
class ActionLengthValidator(TurnValidator):
    def validate(self, *, ctx: ValidationContext, state: GameState) -> None:
        if len(ctx.action) > ctx.max_length:
            raise ValidationRejected(f"That action is too long (max {ctx.max_length} characters).")


@dataclass(frozen=True, slots=True)
class ValidatorPipeline:
    validators: tuple[TurnValidator, ...]

    def validate(self, *, ctx: ValidationContext, state: GameState) -> None:
        for v in self.validators:
            v.validate(ctx=ctx, state=state)


DEFAULT_PIPELINE = ValidatorPipeline(
    validators=(
        NonEmptyActionValidator(),
        ActionLengthValidator(),
    )
)
