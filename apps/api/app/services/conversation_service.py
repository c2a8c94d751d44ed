"""Conversation service - channel lifecycle, disclosure and history."""

import logging
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import InvalidTransition, NotFound, ServerError, Unauthorized
from app.db.base import utcnow
from app.db.enums import DisclosureBasis, DisclosureState, GateState
from app.db.models import Account, Conversation, ConversationParticipant, Message
from app.schemas.auth import ActorSession
from app.services import alias_service
from app.utils.pagination import page_count

logger = logging.getLogger(__name__)

MAX_HISTORY_PAGE_SIZE = 100


def pair_key(first_id: UUID, second_id: UUID) -> str:
    """Order-independent key for a pair of accounts."""
    return ":".join(sorted([str(first_id), str(second_id)]))


def get_conversation(db: Session, conversation_id: UUID) -> Conversation | None:
    return db.get(Conversation, conversation_id)


def get_live_for_pair(db: Session, first_id: UUID, second_id: UUID) -> Conversation | None:
    return (
        db.query(Conversation)
        .filter(
            Conversation.pair_key == pair_key(first_id, second_id),
            Conversation.gate_state != GateState.CLOSED.value,
        )
        .first()
    )


def participant_ids(conversation: Conversation) -> list[UUID]:
    return [p.account_id for p in conversation.participants]


def is_participant(conversation: Conversation, account_id: UUID) -> bool:
    return account_id in participant_ids(conversation)


def get_for_actor(db: Session, actor: ActorSession, conversation_id: UUID) -> Conversation:
    """
    Load a conversation the actor may see (participant or staff).

    Raises:
        NotFound: missing, or the actor is neither participant nor admin
    """
    conversation = get_conversation(db, conversation_id)
    if not conversation:
        raise NotFound("Conversation not found")
    if not actor.is_admin and not is_participant(conversation, actor.account_id):
        raise NotFound("Conversation not found")
    return conversation


def open_for_pair(db: Session, first: Account, second: Account) -> tuple[Conversation, bool]:
    """
    Return the live conversation for the pair, creating an open one if none.

    Stages changes on the caller's transaction (no commit). Both accounts
    must already hold alias bindings. A reused conversation keeps its gate
    state, so a suspended channel still needs staff re-approval.
    """
    existing = get_live_for_pair(db, first.id, second.id)
    if existing:
        return existing, False

    conversation = Conversation(
        pair_key=pair_key(first.id, second.id),
        message_budget=settings.MESSAGE_BUDGET,
        unsupervised_message_count=0,
        gate_state=GateState.OPEN.value,
        disclosure_state=DisclosureState.LOCKED.value,
    )
    for account in (first, second):
        binding = alias_service.get_binding(db, account.id)
        if binding is None:
            raise ServerError("Participant has no alias")
        conversation.participants.append(
            ConversationParticipant(
                account_id=account.id,
                role=account.role,
                alias_code=binding.code,
                alias_label=binding.label,
            )
        )
    db.add(conversation)
    db.flush()
    logger.info(
        "Conversation opened",
        extra={"conversation_id": str(conversation.id)},
    )
    return conversation, True


def close_within(db: Session, conversation_id: UUID, closed_by_id: UUID | None) -> bool:
    """Close a conversation on the caller's transaction. Returns False if already closed."""
    result = db.execute(
        update(Conversation)
        .where(
            Conversation.id == conversation_id,
            Conversation.gate_state != GateState.CLOSED.value,
        )
        .values(
            gate_state=GateState.CLOSED.value,
            closed_at=func.now(),
            closed_by_id=closed_by_id,
            updated_at=func.now(),
        )
        .execution_options(synchronize_session="fetch")
    )
    return result.rowcount > 0


def close_conversation(db: Session, actor: ActorSession, conversation_id: UUID) -> tuple[Conversation, bool]:
    """
    Soft-close a conversation (either participant or staff).

    Idempotent: closing a closed conversation returns it unchanged.
    """
    conversation = get_for_actor(db, actor, conversation_id)
    try:
        changed = close_within(db, conversation.id, actor.account_id)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Conversation close failed", extra={"conversation_id": str(conversation_id)})
        raise ServerError() from exc
    db.refresh(conversation)
    if changed:
        logger.info(
            "Conversation closed",
            extra={"conversation_id": str(conversation.id), "account_id": str(actor.account_id)},
        )
    return conversation, changed


def unlock_disclosure(
    db: Session,
    conversation_id: UUID,
    basis: DisclosureBasis,
    actor: ActorSession | None = None,
) -> tuple[Conversation, bool]:
    """
    Unlock identity disclosure for a conversation.

    ``actor`` is None when called by the NDA/payment provider integration;
    otherwise only staff may unlock. Once unlocked, messages no longer count
    against the budget. Idempotent.
    """
    if actor is not None and not actor.is_admin:
        logger.warning(
            "Disclosure unlock denied",
            extra={"account_id": str(actor.account_id), "conversation_id": str(conversation_id)},
        )
        raise Unauthorized("Only staff can unlock disclosure")
    if actor is None and basis == DisclosureBasis.ADMIN:
        raise Unauthorized("Admin unlock requires a staff actor")

    conversation = get_conversation(db, conversation_id)
    if not conversation:
        raise NotFound("Conversation not found")
    if conversation.gate_state == GateState.CLOSED.value:
        raise InvalidTransition("Conversation is closed")
    if conversation.disclosure_state == DisclosureState.UNLOCKED.value:
        return conversation, False

    conversation.disclosure_state = DisclosureState.UNLOCKED.value
    conversation.disclosure_basis = basis.value
    conversation.disclosed_at = utcnow()
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise ServerError() from exc
    db.refresh(conversation)
    logger.info(
        "Disclosure unlocked",
        extra={"conversation_id": str(conversation.id), "basis": basis.value},
    )
    return conversation, True


def list_for_actor(
    db: Session,
    actor: ActorSession,
    gate_state: GateState | None = None,
    limit: int = 100,
) -> list[Conversation]:
    """Participants see their own conversations; staff see all."""
    query = db.query(Conversation)
    if not actor.is_admin:
        query = query.join(ConversationParticipant).filter(
            ConversationParticipant.account_id == actor.account_id
        )
    if gate_state:
        query = query.filter(Conversation.gate_state == gate_state.value)
    return query.order_by(Conversation.updated_at.desc()).limit(limit).all()


def get_history(
    db: Session,
    actor: ActorSession,
    conversation_id: UUID,
    page: int = 1,
    limit: int | None = None,
) -> tuple[list[Message], dict]:
    """
    One page of conversation history.

    Pages are taken newest-first (page 1 is the most recent messages) and
    returned oldest-first for display.
    """
    conversation = get_for_actor(db, actor, conversation_id)
    per_page = min(max(limit or settings.HISTORY_PAGE_SIZE, 1), MAX_HISTORY_PAGE_SIZE)
    page = max(page, 1)

    base = db.query(Message).filter(Message.conversation_id == conversation.id)
    total = base.count()
    newest_first = (
        base.order_by(Message.created_at.desc(), Message.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    pages = page_count(total, per_page)
    pagination = {
        "current_page": page,
        "total_pages": pages,
        "total_messages": total,
        "has_next": page < pages,
    }
    return list(reversed(newest_first)), pagination


def mark_as_read(
    db: Session,
    actor: ActorSession,
    conversation_id: UUID,
    message_ids: list[int] | None = None,
) -> list[int]:
    """Mark messages from the other party as read. Returns the ids marked."""
    conversation = get_for_actor(db, actor, conversation_id)
    query = select(Message.id).where(
        Message.conversation_id == conversation.id,
        Message.sender_id != actor.account_id,
        Message.is_read.is_(False),
    )
    if message_ids:
        query = query.where(Message.id.in_(message_ids))
    ids = list(db.scalars(query).all())
    if not ids:
        return []
    try:
        db.execute(
            update(Message)
            .where(Message.id.in_(ids))
            .values(is_read=True, read_at=func.now())
            .execution_options(synchronize_session="fetch")
        )
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise ServerError() from exc
    return ids


# =============================================================================
# Presentation
# =============================================================================


def present_conversation(db: Session, conversation: Conversation) -> dict:
    """Conversation view with participants shown through the disclosure gate."""
    participants = []
    for participant in conversation.participants:
        view = alias_service.present_account(db, participant.account, conversation)
        view["participant_id"] = participant.id
        participants.append(view)
    return {
        "id": conversation.id,
        "gate_state": conversation.gate_state,
        "disclosure_state": conversation.disclosure_state,
        "disclosure_basis": conversation.disclosure_basis,
        "message_budget": conversation.message_budget,
        "unsupervised_message_count": conversation.unsupervised_message_count,
        "participants": participants,
        "last_activity_at": conversation.last_activity_at,
        "created_at": conversation.created_at,
        "closed_at": conversation.closed_at,
    }


def present_message(message: Message) -> dict:
    return {
        "id": message.id,
        "conversation_id": message.conversation_id,
        "sender_alias": message.sender_alias,
        "content": message.content,
        "delivered": message.delivered,
        "is_read": message.is_read,
        "created_at": message.created_at,
    }
