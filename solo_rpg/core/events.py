from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Literal

EventType = Literal[
    "TURN_STARTED",
    "ACTION_REJECTED",
    "NPC_RESPONDED",
    "NARRATION_GENERATED",
    "STATE_APPLIED",
    "HISTORY_COMPACTED",
    "SCENE_ILLUSTRATED",
    "TURN_FAILED",
    "TURN_ENDED",
]


@dataclass(frozen=True, slots=True)
class TurnEvent:
    type: EventType
    turn_id: int
    payload: dict[str, Any]
    ts: datetime

    @staticmethod
    def now(*, type: EventType, turn_id: int, payload: dict[str, Any] | None = None) -> "TurnEvent":
        return TurnEvent(type=type, turn_id=turn_id, payload=payload or {}, ts=datetime.now(timezone.utc))
