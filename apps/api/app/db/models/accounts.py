"""SQLAlchemy ORM models."""

from __future__ import annotations

from typing import TYPE_CHECKING

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base, utcnow

if TYPE_CHECKING:
    from app.db.models import ConversationParticipant


class Account(Base):
    """
    Local projection of an identity-provider account.

    Real name/email/phone live here and are only ever shown to a
    counterparty through the disclosure-aware presenter.
    """

    __tablename__ = "accounts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    role: Mapped[str] = mapped_column(String(20), nullable=False)
    display_name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(320), unique=True, nullable=False)
    phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    token_version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )

    alias_binding: Mapped[AliasBinding | None] = relationship(
        back_populates="account", uselist=False
    )
    participations: Mapped[list[ConversationParticipant]] = relationship(
        back_populates="account"
    )


class AliasBinding(Base):
    """
    Role-scoped pseudonym for an account, e.g. FNB014 → "Founder #FNB014".

    Sequence numbers are allocated first-gap within a prefix and are never
    renumbered while the binding lives.
    """

    __tablename__ = "alias_bindings"
    __table_args__ = (
        UniqueConstraint("prefix", "sequence", name="uq_alias_prefix_sequence"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    account_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("accounts.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    prefix: Mapped[str] = mapped_column(String(8), nullable=False)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    code: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    label: Mapped[str] = mapped_column(String(50), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )

    account: Mapped[Account] = relationship(back_populates="alias_binding")
