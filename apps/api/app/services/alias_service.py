"""Alias service - role-scoped pseudonyms and disclosure-aware presentation.

Every account is known to counterparties by an alias such as
``Founder #FNB014`` until the conversation's disclosure gate is unlocked.
Numbers are allocated per prefix, lowest free number first, and a live
binding keeps its number for life.
"""

import logging
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import NotFound, ServerError
from app.db.enums import DisclosureState, Role
from app.db.models import Account, AliasBinding, Conversation, ConversationParticipant

logger = logging.getLogger(__name__)

ROLE_PREFIXES: dict[Role, str] = {
    Role.FOUNDER: "FNB",
    Role.INVESTOR: "INV",
    Role.MENTOR: "MNT",
    Role.ADMIN: "ADM",
    Role.SUPERADMIN: "SAD",
}

ROLE_LABELS: dict[Role, str] = {
    Role.FOUNDER: "Founder",
    Role.INVESTOR: "Investor",
    Role.MENTOR: "Mentor",
    Role.ADMIN: "Admin",
    Role.SUPERADMIN: "Super Admin",
}

MAX_ALLOCATION_ATTEMPTS = 5


def format_code(prefix: str, sequence: int, width: int | None = None) -> str:
    """FNB + 14 -> FNB014 (zero-padded to ALIAS_SEQUENCE_WIDTH)."""
    return f"{prefix}{str(sequence).zfill(width or settings.ALIAS_SEQUENCE_WIDTH)}"


def format_label(role: Role, code: str) -> str:
    return f"{ROLE_LABELS[role]} #{code}"


def get_binding(db: Session, account_id: UUID) -> AliasBinding | None:
    return db.scalars(
        select(AliasBinding).where(AliasBinding.account_id == account_id)
    ).first()


def next_free_sequence(db: Session, prefix: str) -> int:
    """Lowest positive number not held by a live binding under ``prefix``."""
    taken = db.scalars(
        select(AliasBinding.sequence)
        .where(AliasBinding.prefix == prefix)
        .order_by(AliasBinding.sequence)
    ).all()
    expected = 1
    for sequence in taken:
        if sequence > expected:
            break
        if sequence == expected:
            expected += 1
    return expected


def ensure_alias(db: Session, account: Account) -> AliasBinding:
    """
    Return the account's alias binding, creating it on first use.

    Runs as its own unit of work (commits), so call it before staging other
    changes on the session. Concurrent allocations of the same number are
    resolved by the (prefix, sequence) unique constraint and a retry.
    """
    existing = get_binding(db, account.id)
    if existing:
        return existing

    role = Role(account.role)
    prefix = ROLE_PREFIXES[role]

    for _ in range(MAX_ALLOCATION_ATTEMPTS):
        sequence = next_free_sequence(db, prefix)
        code = format_code(prefix, sequence)
        binding = AliasBinding(
            account_id=account.id,
            prefix=prefix,
            sequence=sequence,
            code=code,
            label=format_label(role, code),
        )
        db.add(binding)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            # Another writer bound this account or took the number
            existing = get_binding(db, account.id)
            if existing:
                return existing
            continue
        db.refresh(binding)
        logger.info(
            "Alias allocated",
            extra={"account_id": str(account.id), "alias": code},
        )
        return binding

    raise ServerError("Could not allocate alias")


def ensure_alias_for(db: Session, account_id: UUID) -> AliasBinding:
    account = db.get(Account, account_id)
    if not account:
        raise NotFound("Account not found")
    return ensure_alias(db, account)


def resolve_alias(
    db: Session,
    account_id: UUID,
    conversation_id: UUID | None = None,
) -> str | None:
    """
    Display alias for an account, or None when no binding exists.

    Inside a conversation the alias recorded on the participant row wins,
    so what a counterparty saw stays stable for that conversation.
    """
    if conversation_id is not None:
        label = db.scalars(
            select(ConversationParticipant.alias_label).where(
                ConversationParticipant.conversation_id == conversation_id,
                ConversationParticipant.account_id == account_id,
            )
        ).first()
        if label:
            return label
    binding = get_binding(db, account_id)
    return binding.label if binding else None


def can_disclose(db: Session, conversation_id: UUID) -> bool:
    """True only once the conversation's disclosure gate is unlocked."""
    state = db.scalars(
        select(Conversation.disclosure_state).where(Conversation.id == conversation_id)
    ).first()
    return state == DisclosureState.UNLOCKED.value


def release_alias(db: Session, account_id: UUID) -> bool:
    """
    Delete the account's binding, freeing its number for reuse.

    Used when an account is removed. Existing conversation participant rows
    keep the label they were created with.
    """
    binding = get_binding(db, account_id)
    if not binding:
        return False
    code = binding.code
    db.delete(binding)
    db.commit()
    logger.info("Alias released", extra={"account_id": str(account_id), "alias": code})
    return True


def present_account(
    db: Session,
    account: Account,
    conversation: Conversation | None = None,
) -> dict:
    """
    Identity of ``account`` as shown to a counterparty.

    Account id, real name and email are attached only when ``conversation`` is unlocked.
    Everywhere else the alias is all that leaves the service.
    """
    alias = resolve_alias(db, account.id, conversation.id if conversation else None)
    view: dict = {"role": account.role, "alias": alias}
    if conversation is not None and conversation.disclosure_state == DisclosureState.UNLOCKED.value:
        view["account_id"] = str(account.id)
        view["display_name"] = account.display_name
        view["email"] = account.email
    return view
