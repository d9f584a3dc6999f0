from __future__ import annotations

from uuid import uuid4

from solo_rpg.agents.base import GameServices
from solo_rpg.api.models import NarrationResult, ValidationVerdict


def _new_session(client) -> dict:  # type: ignore[no-untyped-def]
    res = client.post("/session")
    assert res.status_code == 201
    return res.json()


def test_healthcheck(client_and_redis) -> None:  # type: ignore[no-untyped-def]
    client, _ = client_and_redis
    assert client.get("/healthcheck").json() == {"status": "ok"}


def test_create_session_runs_opening(client_and_redis) -> None:  # type: ignore[no-untyped-def]
    client, _ = client_and_redis

    data = _new_session(client)

    assert data["turn"]["status"] == "ok"
    assert data["turn"]["narration"] == "You wake up in Room 302. A nurse hums nearby."
    assert data["turn"]["state"]["player"]["name"] == "Sung Jinwoo"

    view = client.get(f"/session/{data['session_id']}").json()
    assert view["phase"] == "idle"
    assert [e["role"] for e in view["history"]] == ["Narrator"]
    assert view["state"]["world"]["location"] == "Seoul Ilshin Hospital - Room 302"


def test_unknown_session_is_404(client_and_redis) -> None:  # type: ignore[no-untyped-def]
    client, _ = client_and_redis
    sid = uuid4()

    assert client.get(f"/session/{sid}").status_code == 404
    assert client.post(f"/session/{sid}/actions", json={"action": "look"}).status_code == 404
    assert client.post(f"/session/{sid}/save").status_code == 404


def test_action_turn(client_and_redis, services: GameServices) -> None:  # type: ignore[no-untyped-def]
    client, _ = client_and_redis
    sid = _new_session(client)["session_id"]
    services.narrator.result = NarrationResult(
        narration="You open the door.",
        state_changes={"player": {"experience": 10}},
    )

    res = client.post(f"/session/{sid}/actions", json={"action": "open door"})

    assert res.status_code == 200
    body = res.json()
    assert body["status"] == "ok"
    assert body["state"]["player"]["experience"] == 10
    view = client.get(f"/session/{sid}").json()
    assert [e["text"] for e in view["history"]][-2:] == ["open door", "You open the door."]


def test_rejected_action_is_200_with_message(client_and_redis, services: GameServices) -> None:  # type: ignore[no-untyped-def]
    client, _ = client_and_redis
    sid = _new_session(client)["session_id"]
    services.validator.verdict = ValidationVerdict(valid=False, reason="Not now.")

    body = client.post(f"/session/{sid}/actions", json={"action": "fly"}).json()

    assert body["status"] == "rejected"
    assert body["message"] == "You can't do that. Not now."


def test_empty_action_is_422(client_and_redis) -> None:  # type: ignore[no-untyped-def]
    client, _ = client_and_redis
    sid = _new_session(client)["session_id"]
    assert client.post(f"/session/{sid}/actions", json={"action": ""}).status_code == 422


def test_save_and_load(client_and_redis, services: GameServices) -> None:  # type: ignore[no-untyped-def]
    client, _ = client_and_redis
    sid = _new_session(client)["session_id"]
    services.narrator.result = NarrationResult(narration="You find gold.", state_changes={"player": {"gold": 7}})
    client.post(f"/session/{sid}/actions", json={"action": "search"})

    saved = client.post(f"/session/{sid}/save")
    assert saved.status_code == 201
    save_id = saved.json()["save_id"]
    assert client.get(f"/session/{sid}/saves").json() == {"saves": [save_id]}

    reset = client.post(f"/session/{sid}/reset").json()
    assert reset["state"]["player"]["gold"] == 0

    loaded = client.post(f"/session/{sid}/load", json={"save_id": save_id})
    assert loaded.status_code == 200
    assert loaded.json()["narration"] == services.narrator.continuation.narration
    assert client.get(f"/session/{sid}").json()["state"]["player"]["gold"] == 7


def test_load_missing_or_corrupt_save(client_and_redis) -> None:  # type: ignore[no-untyped-def]
    client, r = client_and_redis
    sid = _new_session(client)["session_id"]

    assert client.post(f"/session/{sid}/load", json={"save_id": str(uuid4())}).status_code == 404

    bad_id = uuid4()
    r.set(f"solo_rpg:save:{bad_id}", '{"version": "1.0.0"}')
    res = client.post(f"/session/{sid}/load", json={"save_id": str(bad_id)})
    assert res.status_code == 422


def test_tool_endpoint(client_and_redis) -> None:  # type: ignore[no-untyped-def]
    client, _ = client_and_redis
    sid = _new_session(client)["session_id"]

    res = client.post(
        f"/session/{sid}/tools/update_inventory",
        json={"action": "add", "items": [{"name": "Potion", "quantity": 2}]},
    )

    assert res.status_code == 200
    body = res.json()
    assert body["success"] is True
    assert {"Potion": 2}.items() <= {i["name"]: i["quantity"] for i in body["state"]["player"]["inventory"]}.items()

    assert client.post(f"/session/{sid}/tools/summon_shadow", json={}).status_code == 422


def test_character_profile_tool_endpoint(client_and_redis) -> None:  # type: ignore[no-untyped-def]
    client, _ = client_and_redis
    sid = _new_session(client)["session_id"]

    res = client.post(f"/session/{sid}/tools/update_character_profile", json={"level": 2, "mp": 15})

    assert res.status_code == 200
    body = res.json()
    assert body["success"] is True
    assert (body["state"]["player"]["level"], body["state"]["player"]["MP"]) == (2, 15)


def test_ws_state_updates_broadcast(client_and_redis) -> None:  # type: ignore[no-untyped-def]
    client, _ = client_and_redis
    sid = _new_session(client)["session_id"]

    with client.websocket_connect(f"/ws/session/{sid}") as ws:
        res = client.post(f"/session/{sid}/actions", json={"action": "look around"})
        assert res.status_code == 200

        msg = ws.receive_json()
        assert msg["type"] == "state_updated"
        assert msg["session_id"] == sid
        assert msg["reason"] == "turn"
        assert msg["phase"] == "idle"
