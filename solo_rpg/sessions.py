from __future__ import annotations

import logging
from dataclasses import dataclass
from uuid import UUID, uuid4

from solo_rpg.agents.base import GameServices
from solo_rpg.config import GameSettings
from solo_rpg.errors import SessionNotFoundError
from solo_rpg.orchestrator import ActionOrchestrator

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class GameSession:
    session_id: UUID
    orchestrator: ActionOrchestrator


class SessionRegistry:
    """Live sessions of this process. Each session owns one store, window and FSM."""

    def __init__(self) -> None:
        self._sessions: dict[UUID, GameSession] = {}

    def create(self, *, services: GameServices, settings: GameSettings) -> GameSession:
        session = GameSession(
            session_id=uuid4(),
            orchestrator=ActionOrchestrator(services=services, settings=settings),
        )
        self._sessions[session.session_id] = session
        logger.info("created session %s", session.session_id)
        return session

    def get(self, session_id: UUID) -> GameSession:
        try:
            return self._sessions[session_id]
        except KeyError:
            raise SessionNotFoundError(f"Session {session_id} not found") from None

    def clear(self) -> None:
        self._sessions.clear()


registry = SessionRegistry()
