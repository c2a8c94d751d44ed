"""SQLAlchemy ORM models."""

from __future__ import annotations

from typing import TYPE_CHECKING

import uuid
from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
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
from app.db.enums import DEFAULT_DISCLOSURE_STATE, DEFAULT_GATE_STATE

if TYPE_CHECKING:
    from app.db.models import Account


_OPEN_WHERE = text("gate_state <> 'closed'")


class Conversation(Base):
    """
    Moderated chat channel between two parties of a mediated introduction.

    Messages count against ``message_budget`` while disclosure is locked;
    reaching the budget flips ``gate_state`` to suspended-pending-admin in
    the same UPDATE that records the message.
    """

    __tablename__ = "conversations"
    __table_args__ = (
        # At most one live conversation per pair of accounts
        Index(
            "uq_conversations_live_pair",
            "pair_key",
            unique=True,
            postgresql_where=_OPEN_WHERE,
            sqlite_where=_OPEN_WHERE,
        ),
        Index("idx_conversations_gate", "gate_state", "updated_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    # Sorted "<uuid>:<uuid>" of the two participants
    pair_key: Mapped[str] = mapped_column(String(80), nullable=False)

    message_budget: Mapped[int] = mapped_column(Integer, nullable=False)
    unsupervised_message_count: Mapped[int] = mapped_column(
        Integer, default=0, server_default=text("0"), nullable=False
    )
    gate_state: Mapped[str] = mapped_column(
        String(30), default=DEFAULT_GATE_STATE.value, nullable=False
    )
    disclosure_state: Mapped[str] = mapped_column(
        String(20), default=DEFAULT_DISCLOSURE_STATE.value, nullable=False
    )
    disclosure_basis: Mapped[str | None] = mapped_column(String(20), nullable=True)
    disclosed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    suspended_at: Mapped[datetime | None] = mapped_column(nullable=True)
    approved_by_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("accounts.id", ondelete="SET NULL"), nullable=True
    )
    approved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    closed_by_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("accounts.id", ondelete="SET NULL"), nullable=True
    )
    closed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    last_activity_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), onupdate=utcnow, nullable=False
    )

    participants: Mapped[list[ConversationParticipant]] = relationship(
        back_populates="conversation",
        cascade="all, delete-orphan",
        order_by="ConversationParticipant.joined_at",
    )
    messages: Mapped[list[Message]] = relationship(
        back_populates="conversation",
        cascade="all, delete-orphan",
        lazy="dynamic",
    )


class ConversationParticipant(Base):
    """Membership of an account in a conversation, with the alias shown to others."""

    __tablename__ = "conversation_participants"
    __table_args__ = (
        UniqueConstraint(
            "conversation_id", "account_id", name="uq_conversation_participant"
        ),
        Index("idx_conversation_participants_account", "account_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    conversation_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False
    )
    account_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False
    )
    role: Mapped[str] = mapped_column(String(20), nullable=False)
    alias_code: Mapped[str] = mapped_column(String(20), nullable=False)
    alias_label: Mapped[str] = mapped_column(String(50), nullable=False)
    joined_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )

    conversation: Mapped[Conversation] = relationship(back_populates="participants")
    account: Mapped[Account] = relationship(back_populates="participations")


class Message(Base):
    """
    Chat message. Immutable apart from delivery/read receipts.

    Integer primary key so (created_at, id) gives a total order within a
    conversation.
    """

    __tablename__ = "messages"
    __table_args__ = (
        Index("idx_messages_conversation_created", "conversation_id", "created_at", "id"),
    )

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True
    )
    conversation_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False
    )
    sender_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("accounts.id", ondelete="RESTRICT"), nullable=False
    )
    sender_alias: Mapped[str] = mapped_column(String(50), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    delivered: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    read_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )

    conversation: Mapped[Conversation] = relationship(back_populates="messages")
