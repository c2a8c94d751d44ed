"""Channel gate - per-conversation message budget and staff re-approval.

While disclosure is locked every message counts against the conversation's
budget. The message that reaches the budget is accepted and, in the same
UPDATE, flips the gate to suspended-pending-admin; further messages are
refused until staff re-approve the channel.
"""

import logging
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import and_, case, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.errors import ChannelSuspended, InvalidTransition, NotFound, ServerError, Unauthorized
from app.db.enums import DisclosureState, GateState
from app.db.models import Conversation
from app.schemas.auth import ActorSession
from app.services import notification_service

logger = logging.getLogger(__name__)

# Gate states that accept messages
SENDABLE_STATES = (GateState.OPEN.value, GateState.ADMIN_APPROVED.value)


@dataclass
class GateOutcome:
    """Result of recording one message against the gate."""

    conversation_id: UUID
    count: int
    budget: int
    gate_state: str
    # False once disclosure is unlocked: the count keeps going but never suspends
    gated: bool

    @property
    def suspended(self) -> bool:
        return self.gate_state == GateState.SUSPENDED_PENDING_ADMIN.value

    @property
    def remaining(self) -> int:
        return max(self.budget - self.count, 0)


def record_message(db: Session, conversation_id: UUID, sender_id: UUID) -> GateOutcome:
    """
    Count one message from ``sender_id`` against the gate.

    Stages the change on the caller's transaction so the counter and the
    message row commit together. The check, increment and suspension are a
    single conditional UPDATE, so two concurrent senders can never both slip
    past the budget.

    Raises:
        NotFound: unknown conversation
        ChannelSuspended: gate is not open
    """
    gated = Conversation.disclosure_state == DisclosureState.LOCKED.value
    next_count = Conversation.unsupervised_message_count + 1
    exhausted = and_(gated, next_count >= Conversation.message_budget)

    result = db.execute(
        update(Conversation)
        .where(
            Conversation.id == conversation_id,
            Conversation.gate_state.in_(SENDABLE_STATES),
        )
        .values(
            unsupervised_message_count=next_count,
            gate_state=case(
                (exhausted, GateState.SUSPENDED_PENDING_ADMIN.value),
                else_=Conversation.gate_state,
            ),
            suspended_at=case((exhausted, func.now()), else_=Conversation.suspended_at),
            last_activity_at=func.now(),
            updated_at=func.now(),
        )
        .execution_options(synchronize_session="fetch")
    )

    if result.rowcount == 0:
        state = db.scalar(select(Conversation.gate_state).where(Conversation.id == conversation_id))
        if state is None:
            raise NotFound("Conversation not found")
        logger.info(
            "Message refused by channel gate",
            extra={"conversation_id": str(conversation_id), "account_id": str(sender_id), "gate_state": state},
        )
        if state == GateState.CLOSED.value:
            raise ChannelSuspended("Conversation is closed")
        raise ChannelSuspended()

    row = db.execute(
        select(
            Conversation.unsupervised_message_count,
            Conversation.message_budget,
            Conversation.gate_state,
            Conversation.disclosure_state,
        ).where(Conversation.id == conversation_id)
    ).one()
    outcome = GateOutcome(
        conversation_id=conversation_id,
        count=row.unsupervised_message_count,
        budget=row.message_budget,
        gate_state=row.gate_state,
        gated=row.disclosure_state == DisclosureState.LOCKED.value,
    )

    if outcome.suspended:
        logger.warning(
            "Channel suspended pending admin approval",
            extra={"conversation_id": str(conversation_id), "count": outcome.count},
        )
        conversation = db.get(Conversation, conversation_id)
        notification_service.notify_channel_suspended(db, conversation)
    return outcome


def admin_approve(db: Session, actor: ActorSession, conversation_id: UUID) -> tuple[Conversation, bool]:
    """
    Re-open a suspended channel and reset its counter.

    Approving a channel that is already open is a no-op, so repeated or
    concurrent approvals leave the same state as one. Disclosure is not
    touched. Returns (conversation, changed).

    Raises:
        Unauthorized: actor lacks the admin capability
        NotFound: unknown conversation
        InvalidTransition: conversation is closed
    """
    if not actor.is_admin:
        logger.warning(
            "Channel approval denied",
            extra={"account_id": str(actor.account_id), "conversation_id": str(conversation_id)},
        )
        raise Unauthorized("Only staff can re-approve a conversation")

    try:
        result = db.execute(
            update(Conversation)
            .where(
                Conversation.id == conversation_id,
                Conversation.gate_state == GateState.SUSPENDED_PENDING_ADMIN.value,
            )
            .values(
                gate_state=GateState.OPEN.value,
                unsupervised_message_count=0,
                suspended_at=None,
                approved_by_id=actor.account_id,
                approved_at=func.now(),
                updated_at=func.now(),
            )
            .execution_options(synchronize_session="fetch")
        )
        changed = result.rowcount > 0
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Channel approval failed", extra={"conversation_id": str(conversation_id)})
        raise ServerError() from exc

    conversation = db.get(Conversation, conversation_id)
    if conversation is None:
        raise NotFound("Conversation not found")
    db.refresh(conversation)

    if not changed:
        if conversation.gate_state == GateState.CLOSED.value:
            raise InvalidTransition("Conversation is closed")
        return conversation, False

    logger.info(
        "Channel re-approved",
        extra={"conversation_id": str(conversation_id), "account_id": str(actor.account_id)},
    )
    return conversation, True
