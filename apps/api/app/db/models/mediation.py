"""SQLAlchemy ORM models."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import uuid
from datetime import datetime

from sqlalchemy import (
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base, utcnow
from app.db.enums import TERMINAL_STATUSES

if TYPE_CHECKING:
    from app.db.models import Account, Conversation


_TERMINAL_SQL = ", ".join(f"'{s.value}'" for s in sorted(TERMINAL_STATUSES, key=lambda s: s.value))
_ACTIVE_WHERE = text(f"status NOT IN ({_TERMINAL_SQL})")


class MediationRequest(Base):
    """
    A staff-mediated request between two parties.

    Covers product interest, chat (communication) requests and call
    requests. Status only moves through the mediation state machine;
    rows are never deleted.
    """

    __tablename__ = "mediation_requests"
    __table_args__ = (
        # One active request per (kind, requester, target)
        Index(
            "uq_mediation_requests_active_pair",
            "kind",
            "requester_id",
            "target_id",
            unique=True,
            postgresql_where=_ACTIVE_WHERE,
            sqlite_where=_ACTIVE_WHERE,
        ),
        Index("idx_mediation_requests_status", "status", "created_at"),
        Index("idx_mediation_requests_target", "target_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    kind: Mapped[str] = mapped_column(String(30), nullable=False)
    requester_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("accounts.id", ondelete="RESTRICT"), nullable=False
    )
    target_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("accounts.id", ondelete="RESTRICT"), nullable=False
    )
    payload: Mapped[dict[str, Any]] = mapped_column(default=dict, nullable=False)
    status: Mapped[str] = mapped_column(String(40), nullable=False)

    # Admin substitute shown to the counterparty (redacted contact info etc.)
    admin_edited_payload: Mapped[str | None] = mapped_column(Text, nullable=True)
    counterparty_response: Mapped[str | None] = mapped_column(Text, nullable=True)
    close_reason: Mapped[str | None] = mapped_column(String(50), nullable=True)
    # Set when staff first let the target see the request
    shared_with_target_at: Mapped[datetime | None] = mapped_column(nullable=True)

    # Call requests
    scheduled_for: Mapped[datetime | None] = mapped_column(nullable=True)
    meeting_url: Mapped[str | None] = mapped_column(String(500), nullable=True)

    conversation_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("conversations.id", ondelete="SET NULL"), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), onupdate=utcnow, nullable=False
    )

    requester: Mapped[Account] = relationship(foreign_keys=[requester_id])
    target: Mapped[Account] = relationship(foreign_keys=[target_id])
    conversation: Mapped[Conversation | None] = relationship()
    history: Mapped[list[MediationRequestEvent]] = relationship(
        back_populates="request",
        order_by="MediationRequestEvent.sequence",
    )


class MediationRequestEvent(Base):
    """
    Append-only audit trail entry for a mediation request.

    (request_id, sequence) is unique, so two writers racing on the same
    request cannot both append the same step.
    """

    __tablename__ = "mediation_request_events"
    __table_args__ = (
        UniqueConstraint("request_id", "sequence", name="uq_mediation_event_sequence"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    request_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("mediation_requests.id", ondelete="CASCADE"), nullable=False
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    actor_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("accounts.id", ondelete="SET NULL"), nullable=True
    )
    action: Mapped[str] = mapped_column(String(30), nullable=False)
    from_status: Mapped[str | None] = mapped_column(String(40), nullable=True)
    to_status: Mapped[str] = mapped_column(String(40), nullable=False)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )

    request: Mapped[MediationRequest] = relationship(back_populates="history")
