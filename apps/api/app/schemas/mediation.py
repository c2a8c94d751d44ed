"""Pydantic schemas for mediation requests."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from app.db.enums import CommunicationType, MediationKind


# =============================================================================
# Payloads by kind
# =============================================================================


class ProductInterestPayload(BaseModel):
    """Investor interest in a founder's product."""

    product_id: str = Field(..., min_length=1, max_length=100)
    message: str = Field(..., min_length=1, max_length=5000)


class CommunicationPayload(BaseModel):
    """Request to open a moderated conversation."""

    subject: str = Field(..., min_length=3, max_length=200)
    message: str = Field(..., min_length=10, max_length=5000)
    request_type: CommunicationType = CommunicationType.MESSAGE
    nda_agreed: bool

    @field_validator("nda_agreed")
    @classmethod
    def must_agree(cls, v: bool) -> bool:
        if not v:
            raise ValueError("NDA must be agreed before requesting contact")
        return v


class CallPayload(BaseModel):
    """Request for a staff-scheduled video call."""

    topic: str = Field(..., min_length=1, max_length=200)
    message: str = Field(..., min_length=1, max_length=5000)
    proposed_date: datetime


PAYLOAD_SCHEMAS: dict[MediationKind, type[BaseModel]] = {
    MediationKind.PRODUCT_INTEREST: ProductInterestPayload,
    MediationKind.COMMUNICATION: CommunicationPayload,
    MediationKind.CALL: CallPayload,
}


# =============================================================================
# Requests
# =============================================================================


class MediationRequestCreate(BaseModel):
    """Request schema for submitting a mediation request."""

    kind: MediationKind
    target_id: UUID
    payload: dict[str, Any]


class MediationTransition(BaseModel):
    """
    Request schema for moving a request to a new status.

    ``expected_status`` is the status the caller last saw; the move fails
    with 409 stale_state if it changed in the meantime.
    """

    to_status: str = Field(..., min_length=1, max_length=40)
    expected_status: str = Field(..., min_length=1, max_length=40)
    note: str | None = Field(None, max_length=2000)
    admin_edited_payload: str | None = Field(None, max_length=5000)
    counterparty_response: str | None = Field(None, max_length=5000)
    scheduled_for: datetime | None = None
    meeting_url: str | None = Field(None, max_length=500)
    # Replacement payload when resubmitting after revision-requested
    payload: dict[str, Any] | None = None


class MediationCancel(BaseModel):
    expected_status: str | None = Field(None, max_length=40)


# =============================================================================
# Responses
# =============================================================================


class HistoryEntryRead(BaseModel):
    sequence: int
    actor_alias: str | None
    action: str
    from_status: str | None
    to_status: str
    note: str | None
    created_at: datetime


class MediationRequestRead(BaseModel):
    """Requester / staff view of a request."""

    id: UUID
    kind: MediationKind
    status: str
    requester_alias: str | None
    target_alias: str | None
    payload: dict[str, Any]
    admin_edited_payload: str | None
    counterparty_response: str | None
    close_reason: str | None
    scheduled_for: datetime | None
    meeting_url: str | None
    conversation_id: UUID | None
    created_at: datetime
    updated_at: datetime
    history: list[HistoryEntryRead] = []


class CounterpartyRequestRead(BaseModel):
    """What the target of a request sees: the staff-approved text and an alias."""

    id: UUID
    kind: MediationKind
    status: str
    requester_alias: str | None
    message: str | None
    counterparty_response: str | None
    scheduled_for: datetime | None
    meeting_url: str | None
    conversation_id: UUID | None
    created_at: datetime


class MediationRequestListResponse(BaseModel):
    items: list[MediationRequestRead]
    total: int
    page: int
    per_page: int
    pages: int


class CounterpartyRequestListResponse(BaseModel):
    items: list[CounterpartyRequestRead]
    total: int
    page: int
    per_page: int
    pages: int
