from __future__ import annotations

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from app.database.connection import mongo_db_dependency
from app.exceptions import StorageUnavailable
from app.main import app
from app.utils.dependencies import get_chat_service


@pytest.fixture
def client(sync_db):
    app.dependency_overrides[mongo_db_dependency] = lambda: sync_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth(make_token):
    def _headers(participant_id: str) -> dict:
        return {"Authorization": f"Bearer {make_token(participant_id)}"}
    return _headers


def _start(client, auth, me="u1", other="u2") -> str:
    r = client.post("/conversations", json={"participant_id": other}, headers=auth(me))
    assert r.status_code == 200
    return r.json()["id"]


def test_direct_message_roundtrip(client, auth):
    cid = _start(client, auth)
    assert _start(client, auth, me="u2", other="u1") == cid

    r1 = client.post(f"/conversations/{cid}/messages", json={"body": "hi"}, headers=auth("u1"))
    r2 = client.post(f"/conversations/{cid}/messages", json={"body": "hey"}, headers=auth("u2"))
    assert r1.status_code == r2.status_code == 201
    assert (r1.json()["id"], r2.json()["id"]) == (1, 2)

    page = client.get(f"/conversations/{cid}/messages", params={"after": 0, "limit": 10}, headers=auth("u1")).json()
    assert [m["body"] for m in page["items"]] == ["hi", "hey"]
    assert page["next_after"] is None

    assert client.get(f"/conversations/{cid}/unread", headers=auth("u1")).json()["unread_count"] == 1
    state = client.post(f"/conversations/{cid}/read", json={"upto_message_id": 2}, headers=auth("u1")).json()
    assert state == {"conversation_id": cid, "last_read_message_id": 2, "unread_count": 0}
    assert client.get(f"/conversations/{cid}/unread", headers=auth("u1")).json()["unread_count"] == 0


def test_conversation_listing(client, auth):
    cid = _start(client, auth)
    client.post(f"/conversations/{cid}/messages", json={"body": "hello there"}, headers=auth("u2"))

    body = client.get("/conversations", headers=auth("u1")).json()
    assert len(body["items"]) == 1
    item = body["items"][0]
    assert item["conversation_id"] == cid
    assert item["other_participant"] == "u2"
    assert item["last_message"]["preview"] == "hello there"
    assert item["unread_count"] == 1


def test_get_conversation(client, auth):
    cid = _start(client, auth)
    body = client.get(f"/conversations/{cid}", headers=auth("u2")).json()
    assert body["participants"] == ["u1", "u2"]
    assert body["other_participant"] == "u1"


def test_requests_without_token_are_rejected(client):
    assert client.get("/conversations").status_code == 401
    r = client.get("/conversations", headers={"Authorization": "Bearer not-a-jwt"})
    assert r.status_code == 401


def test_self_conversation_is_bad_request(client, auth):
    r = client.post("/conversations", json={"participant_id": "u1"}, headers=auth("u1"))
    assert r.status_code == 400
    assert r.json()["error"] == "INVALID_PARTICIPANTS"


def test_outsider_is_forbidden(client, auth):
    cid = _start(client, auth)
    r = client.post(f"/conversations/{cid}/messages", json={"body": "hi"}, headers=auth("u3"))
    assert r.status_code == 403
    assert r.json()["error"] == "NOT_A_PARTICIPANT"
    assert client.get(f"/conversations/{cid}/messages", headers=auth("u3")).status_code == 403


def test_unknown_conversation_is_not_found(client, auth):
    r = client.get("/conversations/000000000000000000000000/messages", headers=auth("u1"))
    assert r.status_code == 404
    assert r.json()["error"] == "CONVERSATION_NOT_FOUND"


def test_empty_body_is_bad_request(client, auth):
    cid = _start(client, auth)
    r = client.post(f"/conversations/{cid}/messages", json={"body": "   "}, headers=auth("u1"))
    assert r.status_code == 400
    assert r.json()["error"] == "EMPTY_BODY"


def test_negative_read_position_is_invalid(client, auth):
    cid = _start(client, auth)
    r = client.post(f"/conversations/{cid}/read", json={"upto_message_id": -3}, headers=auth("u1"))
    assert r.status_code == 422


def test_retried_send_returns_same_message(client, auth):
    cid = _start(client, auth)
    payload = {"body": "only once", "client_message_id": "req-1"}
    first = client.post(f"/conversations/{cid}/messages", json=payload, headers=auth("u1")).json()
    second = client.post(f"/conversations/{cid}/messages", json=payload, headers=auth("u1")).json()
    assert first["id"] == second["id"]
    items = client.get(f"/conversations/{cid}/messages", headers=auth("u1")).json()["items"]
    assert len(items) == 1


def test_storage_outage_is_retryable(client, auth):
    class DownService:
        async def start_conversation(self, user_id, other_id):
            raise StorageUnavailable("conversation lookup")

    app.dependency_overrides[get_chat_service] = lambda: DownService()
    r = client.post("/conversations", json={"participant_id": "u2"}, headers=auth("u1"))
    assert r.status_code == 503
    assert r.headers["Retry-After"] == "1"
    assert r.json()["error"] == "STORAGE_UNAVAILABLE"


def test_socket_send_and_read(client, auth, make_token):
    cid = _start(client, auth)
    with client.websocket_connect(f"/messages/ws/chat/u1?token={make_token('u1')}") as ws:
        ws.send_json({"type": "message", "conversation_id": cid, "body": "hi", "client_message_id": "t1"})
        frames = [ws.receive_json(), ws.receive_json()]
        assert {f["type"] for f in frames} == {"message", "ack"}
        ack = next(f for f in frames if f["type"] == "ack")
        assert ack["client_message_id"] == "t1"
        assert ack["message"]["id"] == 1

        ws.send_json({"type": "read", "conversation_id": cid, "upto_message_id": 1})
        read_ack = ws.receive_json()
        assert read_ack["type"] == "read_ack"
        assert read_ack["last_read_message_id"] == 1

        ws.send_json({"type": "message", "conversation_id": cid, "body": ""})
        error = ws.receive_json()
        assert error["type"] == "error"
        assert error["error"] == "EMPTY_BODY"

        ws.send_text("not json")
        assert ws.receive_json()["error"] == "INVALID_FRAME"


def test_socket_rejects_foreign_token(client, make_token):
    with pytest.raises(WebSocketDisconnect) as excinfo:
        with client.websocket_connect(f"/messages/ws/chat/u1?token={make_token('u2')}") as ws:
            ws.receive_text()
    assert excinfo.value.code == 4403
