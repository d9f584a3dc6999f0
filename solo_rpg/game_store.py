from __future__ import annotations

import json
import logging
from uuid import UUID, uuid4

import redis
from pydantic import ValidationError

from solo_rpg.api.models import SaveResponse, SaveSnapshot
from solo_rpg.errors import CorruptSaveError

logger = logging.getLogger(__name__)

SAVES_SET_KEY = "solo_rpg:saves"
SAVE_KEY_PREFIX = "solo_rpg:save:"  # + {uuid}
SESSION_SAVES_KEY_PREFIX = "solo_rpg:session_saves:"  # + {session uuid}


def _save_key(save_id: UUID) -> str:
    return f"{SAVE_KEY_PREFIX}{save_id}"


def _session_saves_key(session_id: UUID) -> str:
    return f"{SESSION_SAVES_KEY_PREFIX}{session_id}"


def encode_snapshot(snapshot: SaveSnapshot) -> str:
    return json.dumps(snapshot.to_wire(), ensure_ascii=False)


def parse_snapshot(raw: str | bytes) -> SaveSnapshot:
    """Decode a stored save.

    Rejects non-JSON input, anything that is not an object, objects without a `state`,
    and states that do not validate.
    """

    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise CorruptSaveError(f"Save is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise CorruptSaveError("Save must be a JSON object")
    if "state" not in data or data["state"] is None:
        raise CorruptSaveError("Save has no game state")

    try:
        return SaveSnapshot.model_validate(data)
    except ValidationError as e:
        raise CorruptSaveError(f"Save failed validation: {e.error_count()} error(s)") from e


def save_snapshot(*, r: redis.Redis, session_id: UUID, snapshot: SaveSnapshot) -> SaveResponse:
    save_id = uuid4()
    r.set(_save_key(save_id), encode_snapshot(snapshot))
    r.sadd(SAVES_SET_KEY, str(save_id))
    r.sadd(_session_saves_key(session_id), str(save_id))
    logger.info("saved session %s as %s", session_id, save_id)
    return SaveResponse(save_id=save_id, session_id=session_id, timestamp=snapshot.timestamp, version=snapshot.version)


def load_snapshot(*, r: redis.Redis, save_id: UUID) -> SaveSnapshot | None:
    raw = r.get(_save_key(save_id))
    if not raw:
        return None
    return parse_snapshot(raw)


def require_snapshot(*, r: redis.Redis, save_id: UUID) -> SaveSnapshot:
    snapshot = load_snapshot(r=r, save_id=save_id)
    if snapshot is None:
        raise LookupError("Save not found")
    return snapshot


def list_saves(*, r: redis.Redis, session_id: UUID | None = None) -> list[UUID]:
    key = SAVES_SET_KEY if session_id is None else _session_saves_key(session_id)
    return [UUID(s) for s in sorted(r.smembers(key))]
