"""
WebSocket router for moderated chat.

Provides a WebSocket endpoint that:
1. Authenticates the actor via JWT (query param or cookie)
2. Joins the actor's identity room (and the admin rooms for staff)
3. Translates client frames into message_service calls
4. Reports failures back as ``error`` events with a stable code

Client frames are JSON ``{"type": ..., "data": {...}}``; the bare text
``ping`` is answered with ``pong``.
"""

import json
import logging
from uuid import UUID

from fastapi import APIRouter, HTTPException, Query, WebSocket, WebSocketDisconnect

from app.core.deps import COOKIE_NAME, session_from_token
from app.core.errors import MediationError, ServerError, ValidationError
from app.core.websocket import manager
from app.db.enums import ChannelEventType
from app.db.session import SessionLocal
from app.schemas.auth import ActorSession
from app.services import conversation_service, message_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ws", tags=["WebSocket"])


def _authenticate(token: str | None) -> ActorSession:
    with SessionLocal() as db:
        return session_from_token(db, token)


def _conversation_id(data: dict) -> UUID:
    raw = data.get("conversation_id")
    try:
        return UUID(str(raw))
    except (TypeError, ValueError):
        raise ValidationError("conversation_id is required")


def _int(data: dict, key: str) -> int | None:
    raw = data.get(key)
    if raw in (None, ""):
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise ValidationError(f"{key} must be an integer")


def _int_list(data: dict, key: str) -> list[int] | None:
    raw = data.get(key)
    if raw is None:
        return None
    if not isinstance(raw, list) or not all(
        isinstance(item, int) and not isinstance(item, bool) for item in raw
    ):
        raise ValidationError(f"{key} must be a list of integers")
    return raw


async def _send(websocket: WebSocket, event_type: ChannelEventType, data: dict) -> None:
    await websocket.send_text(json.dumps({"type": event_type.value, "data": data}, default=str))


async def handle_frame(websocket: WebSocket, actor: ActorSession, frame: dict) -> None:
    """Dispatch one client frame. Domain errors propagate to the caller."""
    event_type = frame.get("type")
    data = frame.get("data") or {}
    if not isinstance(data, dict):
        raise ValidationError("data must be an object")

    with SessionLocal() as db:
        if event_type == "ping":
            await websocket.send_text(json.dumps({"type": "pong"}))

        elif event_type == ChannelEventType.CHAT_MESSAGE.value:
            await message_service.send_message(
                db, actor, _conversation_id(data), data.get("content")
            )

        elif event_type == "adminApprove":
            await message_service.approve_channel(db, actor, _conversation_id(data))

        elif event_type == "getConversationHistory":
            conversation_id = _conversation_id(data)
            messages, pagination = conversation_service.get_history(
                db,
                actor,
                conversation_id,
                page=_int(data, "page") or 1,
                limit=_int(data, "limit"),
            )
            await _send(
                websocket,
                ChannelEventType.CONVERSATION_HISTORY,
                {
                    "conversation_id": str(conversation_id),
                    "messages": [conversation_service.present_message(m) for m in messages],
                    "pagination": pagination,
                },
            )

        elif event_type == "markAsRead":
            await message_service.mark_as_read(
                db, actor, _conversation_id(data), _int_list(data, "message_ids")
            )

        elif event_type == "typing":
            await message_service.relay_typing(
                db, actor, _conversation_id(data), bool(data.get("is_typing", True))
            )

        else:
            raise ValidationError(f"Unknown event type '{event_type}'")


@router.websocket("/chat")
async def websocket_chat(
    websocket: WebSocket,
    token: str | None = Query(None),
):
    """
    WebSocket endpoint for realtime chat.

    Authenticates via:
    1. JWT token in query parameter (?token=...)
    2. Or session cookie (for browser clients)
    """
    try:
        actor = _authenticate(token or websocket.cookies.get(COOKIE_NAME))
    except HTTPException as exc:
        code = 4003 if exc.status_code == 403 else 4001
        await websocket.close(code=code, reason=str(exc.detail))
        return

    await manager.connect(websocket, actor.account_id, actor.capabilities)
    logger.info("Chat socket connected", extra={"account_id": str(actor.account_id)})

    try:
        while True:
            try:
                raw = await websocket.receive_text()
            except WebSocketDisconnect:
                break

            if raw == "ping":
                await websocket.send_text("pong")
                continue

            try:
                frame = json.loads(raw)
                if not isinstance(frame, dict):
                    raise ValidationError("Frame must be a JSON object")
                await handle_frame(websocket, actor, frame)
            except json.JSONDecodeError:
                await _send(
                    websocket,
                    ChannelEventType.ERROR,
                    ValidationError("Invalid JSON").to_dict(),
                )
            except MediationError as exc:
                await _send(websocket, ChannelEventType.ERROR, exc.to_dict())
            except WebSocketDisconnect:
                break
            except Exception:
                logger.exception(
                    "Chat frame failed", extra={"account_id": str(actor.account_id)}
                )
                await _send(websocket, ChannelEventType.ERROR, ServerError().to_dict())
    finally:
        await manager.disconnect(websocket)
