"""Message service - send orchestration for moderated conversations.

A send runs in this order: per-identity rate limit, channel gate, message
row, commit, realtime fan-out, delivery receipt. Business rules stay here;
the websocket and HTTP layers only translate frames and errors.
"""

import logging
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import ChannelSuspended, NotFound, ServerError, ValidationError
from app.core.rate_limit import EventRateLimiter, event_limiter
from app.core.websocket import ConnectionManager, manager
from app.db.enums import ChannelEventType
from app.db.models import Message
from app.schemas.auth import ActorSession
from app.services import channel_gate_service, conversation_service
from app.services.channel_gate_service import GateOutcome

logger = logging.getLogger(__name__)


def clean_content(content: str | None) -> str:
    """
    Trim and validate message text.

    Raises:
        ValidationError: empty, or longer than MESSAGE_MAX_LENGTH
    """
    text = (content or "").strip()
    if not text:
        raise ValidationError("Message cannot be empty")
    if len(text) > settings.MESSAGE_MAX_LENGTH:
        raise ValidationError(
            f"Message exceeds {settings.MESSAGE_MAX_LENGTH} characters"
        )
    return text


def create_message(
    db: Session,
    actor: ActorSession,
    conversation_id: UUID,
    content: str,
) -> tuple[Message, GateOutcome]:
    """
    Persist one message through the channel gate (no fan-out).

    The gate update and the message insert commit together; a refused
    message leaves no trace.

    Raises:
        ValidationError, NotFound, ChannelSuspended, ServerError
    """
    text = clean_content(content)
    conversation = conversation_service.get_conversation(db, conversation_id)
    if not conversation or not conversation_service.is_participant(conversation, actor.account_id):
        raise NotFound("Conversation not found")

    sender_alias = next(
        p.alias_label for p in conversation.participants if p.account_id == actor.account_id
    )
    try:
        outcome = channel_gate_service.record_message(db, conversation.id, actor.account_id)
        message = Message(
            conversation_id=conversation.id,
            sender_id=actor.account_id,
            sender_alias=sender_alias,
            content=text,
        )
        db.add(message)
        db.commit()
    except (ChannelSuspended, NotFound):
        db.rollback()
        raise
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Message persist failed", extra={"conversation_id": str(conversation_id)})
        raise ServerError() from exc
    db.refresh(message)
    return message, outcome


def mark_delivered(db: Session, message: Message) -> None:
    db.execute(
        update(Message)
        .where(Message.id == message.id)
        .values(delivered=True)
        .execution_options(synchronize_session="fetch")
    )
    db.commit()


def _alias_in(conversation, account_id: UUID) -> str | None:
    return next(
        (p.alias_label for p in conversation.participants if p.account_id == account_id), None
    )


def _event(event_type: ChannelEventType, data: dict) -> dict:
    return {"type": event_type.value, "data": data}


def _limit_payload(conversation_id: UUID, outcome: GateOutcome | None = None) -> dict:
    data = {
        "conversation_id": str(conversation_id),
        "message": "Message limit reached. An admin must approve before the conversation can continue.",
    }
    if outcome is not None:
        data["count"] = outcome.count
        data["budget"] = outcome.budget
    return data


async def send_message(
    db: Session,
    actor: ActorSession,
    conversation_id: UUID,
    content: str,
    *,
    transport: ConnectionManager = manager,
    limiter: EventRateLimiter = event_limiter,
) -> tuple[Message, GateOutcome]:
    """
    Send a chat message and fan it out.

    Raises:
        RateLimited: sender exceeded its event window (checked first)
        ChannelSuspended: gate not open; the sender also receives limitReached
        ValidationError, NotFound, ServerError
    """
    limiter.hit(actor.account_id)

    try:
        message, outcome = create_message(db, actor, conversation_id, content)
    except ChannelSuspended:
        await transport.send_to_user(
            actor.account_id,
            _event(ChannelEventType.LIMIT_REACHED, _limit_payload(conversation_id)),
        )
        raise

    conversation = conversation_service.get_conversation(db, conversation_id)
    participants = conversation_service.participant_ids(conversation)
    payload = conversation_service.present_message(message)

    reached = await transport.publish(
        conversation_id, participants, _event(ChannelEventType.CHAT_MESSAGE, payload)
    )
    others_online = any(
        transport.get_connected_count(pid) for pid in participants if pid != actor.account_id
    )
    if reached and others_online:
        mark_delivered(db, message)
        await transport.send_to_user(
            actor.account_id,
            _event(
                ChannelEventType.MESSAGE_DELIVERED,
                {"conversation_id": str(conversation_id), "message_id": message.id},
            ),
        )

    if outcome.suspended:
        await transport.send_to_user(
            actor.account_id,
            _event(ChannelEventType.LIMIT_REACHED, _limit_payload(conversation_id, outcome)),
        )
        await transport.publish(
            conversation_id,
            participants,
            _event(
                ChannelEventType.APPROVAL_NEEDED,
                {
                    "conversation_id": str(conversation_id),
                    "count": outcome.count,
                    "budget": outcome.budget,
                    "participants": [p.alias_label for p in conversation.participants],
                },
            ),
        )

    logger.info(
        "Message sent",
        extra={
            "conversation_id": str(conversation_id),
            "account_id": str(actor.account_id),
            "count": outcome.count,
        },
    )
    return message, outcome


async def approve_channel(
    db: Session,
    actor: ActorSession,
    conversation_id: UUID,
    *,
    transport: ConnectionManager = manager,
):
    """Staff re-approval plus the adminApproved broadcast."""
    conversation, changed = channel_gate_service.admin_approve(db, actor, conversation_id)
    if changed:
        await transport.publish(
            conversation.id,
            conversation_service.participant_ids(conversation),
            _event(
                ChannelEventType.ADMIN_APPROVED,
                {
                    "conversation_id": str(conversation.id),
                    "budget": conversation.message_budget,
                },
            ),
        )
        await transport.send_to_admins(
            _event(
                ChannelEventType.ADMIN_APPROVED,
                {"conversation_id": str(conversation.id), "budget": conversation.message_budget},
            )
        )
    return conversation, changed


async def close_conversation(
    db: Session,
    actor: ActorSession,
    conversation_id: UUID,
    *,
    transport: ConnectionManager = manager,
):
    conversation, changed = conversation_service.close_conversation(db, actor, conversation_id)
    if changed:
        await transport.publish(
            conversation.id,
            conversation_service.participant_ids(conversation),
            _event(ChannelEventType.CONVERSATION_CLOSED, {"conversation_id": str(conversation.id)}),
        )
        transport.release_conversation(conversation.id)
    return conversation, changed


async def unlock_disclosure(
    db: Session,
    actor: ActorSession | None,
    conversation_id: UUID,
    basis,
    *,
    transport: ConnectionManager = manager,
):
    conversation, changed = conversation_service.unlock_disclosure(db, conversation_id, basis, actor)
    if changed:
        await transport.publish(
            conversation.id,
            conversation_service.participant_ids(conversation),
            _event(
                ChannelEventType.DISCLOSURE_UNLOCKED,
                conversation_service.present_conversation(db, conversation),
            ),
        )
    return conversation, changed


async def mark_as_read(
    db: Session,
    actor: ActorSession,
    conversation_id: UUID,
    message_ids: list[int] | None = None,
    *,
    transport: ConnectionManager = manager,
) -> list[int]:
    ids = conversation_service.mark_as_read(db, actor, conversation_id, message_ids)
    if ids:
        conversation = conversation_service.get_conversation(db, conversation_id)
        await transport.publish(
            conversation_id,
            conversation_service.participant_ids(conversation),
            _event(
                ChannelEventType.MESSAGE_READ,
                {
                    "conversation_id": str(conversation_id),
                    "message_ids": ids,
                    "reader_alias": _alias_in(conversation, actor.account_id),
                },
            ),
        )
    return ids


async def relay_typing(
    db: Session,
    actor: ActorSession,
    conversation_id: UUID,
    is_typing: bool,
    *,
    transport: ConnectionManager = manager,
) -> None:
    """Typing indicator to the other participants (not persisted)."""
    conversation = conversation_service.get_for_actor(db, actor, conversation_id)
    others = [
        pid for pid in conversation_service.participant_ids(conversation) if pid != actor.account_id
    ]
    alias = _alias_in(conversation, actor.account_id)
    await transport.publish(
        conversation_id,
        others,
        _event(
            ChannelEventType.USER_TYPING,
            {"conversation_id": str(conversation_id), "alias": alias, "is_typing": is_typing},
        ),
    )
