"""Conversation API endpoints (HTTP counterpart of the chat socket)."""

from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.core.deps import get_current_session, get_db, require_roles
from app.db.enums import ROLES_CAN_REVIEW, GateState
from app.schemas.auth import ActorSession
from app.schemas.conversation import (
    ConversationHistory,
    ConversationRead,
    DisclosureUnlock,
    MarkReadResult,
    MessageCreate,
    SendResult,
)
from app.services import conversation_service, message_service

router = APIRouter(prefix="/conversations", tags=["conversations"])


class MarkReadRequest(BaseModel):
    message_ids: list[int] | None = None


@router.get("", response_model=list[ConversationRead])
def list_conversations(
    gate_state: GateState | None = None,
    session: ActorSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """Own conversations; staff see all (filter gate_state=suspended-pending-admin for the approval queue)."""
    conversations = conversation_service.list_for_actor(db, session, gate_state)
    return [conversation_service.present_conversation(db, c) for c in conversations]


@router.get("/{conversation_id}", response_model=ConversationRead)
def get_conversation(
    conversation_id: UUID,
    session: ActorSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    conversation = conversation_service.get_for_actor(db, session, conversation_id)
    return conversation_service.present_conversation(db, conversation)


@router.get("/{conversation_id}/messages", response_model=ConversationHistory)
def get_history(
    conversation_id: UUID,
    page: int = Query(1, ge=1),
    limit: int | None = Query(None, ge=1, le=100),
    session: ActorSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """One page of history, newest page first, messages oldest-first within it."""
    messages, pagination = conversation_service.get_history(
        db, session, conversation_id, page, limit
    )
    return {
        "conversation_id": conversation_id,
        "messages": [conversation_service.present_message(m) for m in messages],
        "pagination": pagination,
    }


@router.post("/{conversation_id}/messages", response_model=SendResult)
async def send_message(
    conversation_id: UUID,
    data: MessageCreate,
    session: ActorSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """Send a message. 423 channel_suspended once the budget is spent."""
    message, outcome = await message_service.send_message(
        db, session, conversation_id, data.content
    )
    return {
        "message": conversation_service.present_message(message),
        "gate_state": outcome.gate_state,
        "unsupervised_message_count": outcome.count,
        "message_budget": outcome.budget,
    }


@router.post("/{conversation_id}/approve", response_model=ConversationRead)
async def approve_conversation(
    conversation_id: UUID,
    session: ActorSession = Depends(require_roles(ROLES_CAN_REVIEW)),
    db: Session = Depends(get_db),
):
    """Re-open a suspended conversation and reset its message count (idempotent)."""
    conversation, _ = await message_service.approve_channel(db, session, conversation_id)
    return conversation_service.present_conversation(db, conversation)


@router.post("/{conversation_id}/close", response_model=ConversationRead)
async def close_conversation(
    conversation_id: UUID,
    session: ActorSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    conversation, _ = await message_service.close_conversation(db, session, conversation_id)
    return conversation_service.present_conversation(db, conversation)


@router.post("/{conversation_id}/disclosure", response_model=ConversationRead)
async def unlock_disclosure(
    conversation_id: UUID,
    data: DisclosureUnlock,
    session: ActorSession = Depends(require_roles(ROLES_CAN_REVIEW)),
    db: Session = Depends(get_db),
):
    """Unlock real identities for both participants."""
    conversation, _ = await message_service.unlock_disclosure(
        db, session, conversation_id, data.basis
    )
    return conversation_service.present_conversation(db, conversation)


@router.post("/{conversation_id}/read", response_model=MarkReadResult)
async def mark_read(
    conversation_id: UUID,
    data: MarkReadRequest,
    session: ActorSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    ids = await message_service.mark_as_read(db, session, conversation_id, data.message_ids)
    return {"marked": len(ids)}
