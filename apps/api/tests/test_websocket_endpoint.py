"""WebSocket endpoint tests (authentication, frames, errors)."""

import json

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from app.main import app


@pytest.fixture
def ws_client():
    with TestClient(app) as tc:
        yield tc


def _frame(event_type: str, **data) -> str:
    return json.dumps({"type": event_type, "data": data}, default=str)


def test_rejects_missing_token(ws_client):
    with pytest.raises(WebSocketDisconnect) as exc_info:
        with ws_client.websocket_connect("/ws/chat"):
            pass
    assert exc_info.value.code == 4001


def test_rejects_invalid_token(ws_client):
    with pytest.raises(WebSocketDisconnect) as exc_info:
        with ws_client.websocket_connect("/ws/chat?token=not-a-jwt"):
            pass
    assert exc_info.value.code == 4001


def test_ping_and_errors(ws_client, founder):
    with ws_client.websocket_connect(f"/ws/chat?token={founder.token}") as ws:
        ws.send_text("ping")
        assert ws.receive_text() == "pong"

        ws.send_text("{not json")
        error = ws.receive_json()
        assert error["type"] == "error"
        assert error["data"]["code"] == "validation_error"

        ws.send_text(_frame("somethingElse"))
        assert ws.receive_json()["data"]["code"] == "validation_error"

        ws.send_text(_frame("chatMessage", content="hi"))
        assert ws.receive_json()["data"]["message"] == "conversation_id is required"


def test_chat_between_parties(ws_client, open_channel, investor, founder):
    conversation_id = open_channel()

    with ws_client.websocket_connect(f"/ws/chat?token={investor.token}") as investor_ws, \
            ws_client.websocket_connect(f"/ws/chat?token={founder.token}") as founder_ws:
        investor_ws.send_text(_frame("chatMessage", conversation_id=conversation_id, content="hello"))

        received = founder_ws.receive_json()
        assert received["type"] == "chatMessage"
        assert received["data"]["content"] == "hello"
        assert received["data"]["sender_alias"] == "Investor #INV001"

        assert investor_ws.receive_json()["type"] == "chatMessage"
        assert investor_ws.receive_json()["type"] == "messageDelivered"

        founder_ws.send_text(_frame("getConversationHistory", conversation_id=conversation_id, page=1))
        history = founder_ws.receive_json()
        assert history["type"] == "conversationHistory"
        assert [m["content"] for m in history["data"]["messages"]] == ["hello"]
        assert history["data"]["pagination"]["total_messages"] == 1


def test_outsider_gets_not_found(ws_client, open_channel, make_party):
    from app.db.enums import Role

    conversation_id = open_channel()
    outsider = make_party(Role.FOUNDER)

    with ws_client.websocket_connect(f"/ws/chat?token={outsider.token}") as ws:
        ws.send_text(_frame("chatMessage", conversation_id=conversation_id, content="let me in"))
        error = ws.receive_json()
        assert error["type"] == "error"
        assert error["data"]["code"] == "not_found"


def test_non_staff_cannot_approve(ws_client, open_channel, investor):
    conversation_id = open_channel()

    with ws_client.websocket_connect(f"/ws/chat?token={investor.token}") as ws:
        ws.send_text(_frame("adminApprove", conversation_id=conversation_id))
        assert ws.receive_json()["data"]["code"] == "unauthorized"


def test_mark_as_read_rejects_malformed_ids(ws_client, open_channel, founder):
    conversation_id = open_channel()

    with ws_client.websocket_connect(f"/ws/chat?token={founder.token}") as ws:
        for bad in ("abc", [1, "2"], {"id": 1}):
            ws.send_text(_frame("markAsRead", conversation_id=conversation_id, message_ids=bad))
            error = ws.receive_json()
            assert error["type"] == "error"
            assert error["data"]["code"] == "validation_error"

        # Socket survives the bad frames
        ws.send_text("ping")
        assert ws.receive_text() == "pong"


def test_history_limit_is_clamped(ws_client, db, open_channel, investor, founder):
    from app.db.models import Message

    conversation_id = open_channel()
    for i in range(3):
        db.add(Message(
            conversation_id=conversation_id,
            sender_id=investor.id,
            sender_alias="Investor #INV001",
            content=f"m{i}",
        ))
    db.commit()

    with ws_client.websocket_connect(f"/ws/chat?token={founder.token}") as ws:
        ws.send_text(_frame("getConversationHistory", conversation_id=conversation_id, limit=-5))
        history = ws.receive_json()["data"]
        assert len(history["messages"]) == 1
        assert history["pagination"]["total_pages"] == 3


def test_unexpected_failure_sends_server_error(ws_client, monkeypatch, open_channel, investor):
    from app.services import message_service

    async def _boom(*args, **kwargs):
        raise RuntimeError("relay down")

    monkeypatch.setattr(message_service, "relay_typing", _boom)
    conversation_id = open_channel()

    with ws_client.websocket_connect(f"/ws/chat?token={investor.token}") as ws:
        ws.send_text(_frame("typing", conversation_id=conversation_id))
        error = ws.receive_json()
        assert error["type"] == "error"
        assert error["data"]["code"] == "server_error"
        assert "relay down" not in error["data"]["message"]

        ws.send_text("ping")
        assert ws.receive_text() == "pong"
