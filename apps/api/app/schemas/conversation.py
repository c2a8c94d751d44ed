"""Pydantic schemas for conversations and messages."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from app.db.enums import DisclosureBasis


class ParticipantRead(BaseModel):
    participant_id: UUID
    role: str
    alias: str | None
    # Only present once disclosure is unlocked
    account_id: UUID | None = None
    display_name: str | None = None
    email: str | None = None


class ConversationRead(BaseModel):
    id: UUID
    gate_state: str
    disclosure_state: str
    disclosure_basis: str | None
    message_budget: int
    unsupervised_message_count: int
    participants: list[ParticipantRead]
    last_activity_at: datetime | None
    created_at: datetime
    closed_at: datetime | None


class MessageRead(BaseModel):
    id: int
    conversation_id: UUID
    sender_alias: str
    content: str
    delivered: bool
    is_read: bool
    created_at: datetime


class HistoryPagination(BaseModel):
    current_page: int
    total_pages: int
    total_messages: int
    has_next: bool


class ConversationHistory(BaseModel):
    """One page of history, oldest first for display."""

    conversation_id: UUID
    messages: list[MessageRead]
    pagination: HistoryPagination


class MessageCreate(BaseModel):
    content: str = Field(..., max_length=10000)


class SendResult(BaseModel):
    message: MessageRead
    gate_state: str
    unsupervised_message_count: int
    message_budget: int


class DisclosureUnlock(BaseModel):
    basis: DisclosureBasis = DisclosureBasis.ADMIN


class MarkReadResult(BaseModel):
    marked: int
