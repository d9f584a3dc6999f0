from __future__ import annotations


class ValidationRejected(ValueError):
    """The action was refused before any state was touched."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class ExternalServiceFailure(RuntimeError):
    """A generator/validator/summarizer call failed or timed out.

    `step` names the turn step that made the call (validation, npc_turn, ...).
    """

    def __init__(self, step: str, cause: BaseException | None = None) -> None:
        detail = f"{type(cause).__name__}: {cause}" if cause is not None else "unknown error"
        super().__init__(f"External call failed during {step}: {detail}")
        self.step = step
        self.cause = cause


class CorruptSaveError(ValueError):
    pass


class UninitializedStoreError(RuntimeError):
    pass


class TurnInProgressError(RuntimeError):
    pass


class SessionNotFoundError(LookupError):
    pass
