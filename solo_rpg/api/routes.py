from __future__ import annotations

import logging
from typing import Any
from uuid import UUID

import redis
from fastapi import APIRouter, Body, Depends, HTTPException, WebSocket, WebSocketDisconnect, status

from solo_rpg.agents.base import GameServices
from solo_rpg.api.deps import get_redis, get_registry, get_services, get_settings
from solo_rpg.api.models import (
    ActionRequest,
    LoadRequest,
    SaveResponse,
    SessionIdResponse,
    SessionView,
    ToolResponse,
    TurnResult,
)
from solo_rpg.config import GameSettings
from solo_rpg.errors import CorruptSaveError, SessionNotFoundError, TurnInProgressError
from solo_rpg.game_store import list_saves, require_snapshot, save_snapshot
from solo_rpg.sessions import GameSession, SessionRegistry
from solo_rpg.tools import ToolExecutor
from solo_rpg.websocket_hub import hub

logger = logging.getLogger(__name__)

router = APIRouter()


def _require_session(registry: SessionRegistry, session_id: UUID) -> GameSession:
    try:
        return registry.get(session_id)
    except SessionNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found") from e


def _require_idle(session: GameSession) -> None:
    if not session.orchestrator.fsm.is_idle:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="A turn is already in progress")


async def _broadcast_state(session: GameSession, *, reason: str) -> None:
    sid = str(session.session_id)
    await hub.broadcast(
        sid,
        {"type": "state_updated", "session_id": sid, "reason": reason, "phase": session.orchestrator.phase.value},
    )


@router.websocket("/ws/session/{session_id}")
async def session_updates_ws(websocket: WebSocket, session_id: UUID) -> None:
    sid = str(session_id)
    await hub.connect(sid, websocket)

    try:
        # Keep the socket open; client can optionally send pings.
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        await hub.disconnect(sid, websocket)
    except Exception:
        await hub.disconnect(sid, websocket)
        raise


@router.get("/healthcheck")
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@router.post("/session", response_model=SessionIdResponse, status_code=status.HTTP_201_CREATED)
async def create_session_route(
    services: GameServices = Depends(get_services),
    settings: GameSettings = Depends(get_settings),
    registry: SessionRegistry = Depends(get_registry),
) -> SessionIdResponse:
    session = registry.create(services=services, settings=settings)
    turn = await session.orchestrator.start_new_game()
    await _broadcast_state(session, reason="new_game")
    return SessionIdResponse(session_id=session.session_id, turn=turn)


@router.get("/session/{session_id}", response_model=SessionView)
async def get_session_route(session_id: UUID, registry: SessionRegistry = Depends(get_registry)) -> SessionView:
    session = _require_session(registry, session_id)
    orch = session.orchestrator
    return SessionView(
        session_id=session.session_id,
        phase=orch.phase,
        state=orch.store.document,
        initial_context=orch.initial_context,
        history=orch.history.entries,
        summaries=orch.history.summaries,
        history_tokens=orch.history.total_tokens,
    )


@router.post("/session/{session_id}/actions", response_model=TurnResult)
async def submit_action_route(
    session_id: UUID,
    payload: ActionRequest,
    registry: SessionRegistry = Depends(get_registry),
) -> TurnResult:
    session = _require_session(registry, session_id)
    result = await session.orchestrator.submit_action(payload.action)
    if result.status == "busy":
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=result.message)

    await _broadcast_state(session, reason="turn")
    return result


@router.post("/session/{session_id}/reset", response_model=TurnResult)
async def reset_session_route(session_id: UUID, registry: SessionRegistry = Depends(get_registry)) -> TurnResult:
    session = _require_session(registry, session_id)
    result = await session.orchestrator.start_new_game()
    if result.status == "busy":
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=result.message)

    await _broadcast_state(session, reason="new_game")
    return result


@router.post("/session/{session_id}/save", response_model=SaveResponse, status_code=status.HTTP_201_CREATED)
async def save_session_route(
    session_id: UUID,
    registry: SessionRegistry = Depends(get_registry),
    r: redis.Redis = Depends(get_redis),
) -> SaveResponse:
    session = _require_session(registry, session_id)
    _require_idle(session)
    return save_snapshot(r=r, session_id=session.session_id, snapshot=session.orchestrator.save_snapshot())


@router.get("/session/{session_id}/saves")
async def list_session_saves_route(
    session_id: UUID,
    registry: SessionRegistry = Depends(get_registry),
    r: redis.Redis = Depends(get_redis),
) -> dict[str, list[UUID]]:
    _require_session(registry, session_id)
    return {"saves": list_saves(r=r, session_id=session_id)}


@router.post("/session/{session_id}/load", response_model=TurnResult)
async def load_session_route(
    session_id: UUID,
    payload: LoadRequest,
    registry: SessionRegistry = Depends(get_registry),
    r: redis.Redis = Depends(get_redis),
) -> TurnResult:
    session = _require_session(registry, session_id)
    try:
        snapshot = require_snapshot(r=r, save_id=payload.save_id)
        session.orchestrator.load_snapshot(snapshot)
    except LookupError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except CorruptSaveError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)) from e
    except TurnInProgressError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e

    result = await session.orchestrator.continue_after_load()
    await _broadcast_state(session, reason="load")
    return result


@router.post("/session/{session_id}/tools/{name}", response_model=ToolResponse)
async def execute_tool_route(
    session_id: UUID,
    name: str,
    parameters: dict[str, Any] = Body(...),
    registry: SessionRegistry = Depends(get_registry),
) -> ToolResponse:
    session = _require_session(registry, session_id)
    _require_idle(session)
    store = session.orchestrator.store
    try:
        result = ToolExecutor(store).execute(name, parameters)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)) from e

    if result.success:
        await _broadcast_state(session, reason="tool")
    return ToolResponse(success=result.success, message=result.message, state=store.document)
