"""Mediation request transition graph and actor rules.

One table per workflow family. Each edge names who may take it:

- ``admin``: actor holds the admin capability (admin or superadmin role)
- ``target``: the counterparty the request was addressed to
- ``requester``: the account that opened the request

Requester cancellation (any non-terminal status to closed-rejected) is not an
edge of these tables; it is checked by ``is_cancellation``.
"""

from app.core.errors import InvalidTransition
from app.db.enums import MediationKind, MediationStatus, TERMINAL_STATUSES

ADMIN = "admin"
TARGET = "target"
REQUESTER = "requester"

S = MediationStatus

INTEREST_TRANSITIONS: dict[MediationStatus, dict[MediationStatus, str]] = {
    S.SUBMITTED: {
        S.ADMIN_REVIEWING: ADMIN,
        S.FORWARDED_TO_COUNTERPARTY: ADMIN,
        S.REJECTED: ADMIN,
    },
    S.ADMIN_REVIEWING: {
        S.FORWARDED_TO_COUNTERPARTY: ADMIN,
        S.REJECTED: ADMIN,
    },
    S.FORWARDED_TO_COUNTERPARTY: {
        S.COUNTERPARTY_RESPONDED: TARGET,
    },
    S.COUNTERPARTY_RESPONDED: {
        S.ADMIN_REVIEWING_RESPONSE: ADMIN,
        S.CLOSED_ACCEPTED: ADMIN,
        S.CLOSED_REJECTED: ADMIN,
        S.REJECTED: ADMIN,
        S.REVISION_REQUESTED: ADMIN,
    },
    S.ADMIN_REVIEWING_RESPONSE: {
        S.APPROVED_DISCLOSED: ADMIN,
        S.REJECTED: ADMIN,
        S.REVISION_REQUESTED: ADMIN,
        S.CLOSED_ACCEPTED: ADMIN,
        S.CLOSED_REJECTED: ADMIN,
    },
    S.APPROVED_DISCLOSED: {
        S.CLOSED_ACCEPTED: ADMIN,
        S.CLOSED_REJECTED: ADMIN,
    },
    S.REVISION_REQUESTED: {
        S.SUBMITTED: REQUESTER,
    },
}

CALL_TRANSITIONS: dict[MediationStatus, dict[MediationStatus, str]] = {
    S.PENDING: {
        S.APPROVED: ADMIN,
        S.REJECTED: ADMIN,
    },
    S.APPROVED: {
        S.SCHEDULED: ADMIN,
    },
    S.SCHEDULED: {
        S.COMPLETED: ADMIN,
    },
}

TRANSITIONS_BY_KIND: dict[MediationKind, dict[MediationStatus, dict[MediationStatus, str]]] = {
    MediationKind.PRODUCT_INTEREST: INTEREST_TRANSITIONS,
    MediationKind.COMMUNICATION: INTEREST_TRANSITIONS,
    MediationKind.CALL: CALL_TRANSITIONS,
}

# Entering these with kind=communication opens (or reuses) the chat channel
CHANNEL_OPENING_STATUSES = frozenset({S.FORWARDED_TO_COUNTERPARTY, S.APPROVED_DISCLOSED})


def allowed_targets(kind: MediationKind, from_status: MediationStatus) -> set[MediationStatus]:
    """Statuses reachable in one step from ``from_status``."""
    return set(TRANSITIONS_BY_KIND[kind].get(from_status, {}))


def required_actor(
    kind: MediationKind,
    from_status: MediationStatus,
    to_status: MediationStatus,
) -> str:
    """
    Return who may take the edge from -> to.

    Raises:
        InvalidTransition: terminal source or no such edge
    """
    if from_status in TERMINAL_STATUSES:
        raise InvalidTransition(f"'{from_status.value}' is terminal")
    actor = TRANSITIONS_BY_KIND[kind].get(from_status, {}).get(to_status)
    if actor is None:
        raise InvalidTransition(
            f"Cannot move {kind.value} request from '{from_status.value}' to '{to_status.value}'"
        )
    return actor


def is_cancellation(from_status: MediationStatus, to_status: MediationStatus) -> bool:
    """Requester withdrawing a live request."""
    return from_status not in TERMINAL_STATUSES and to_status == S.CLOSED_REJECTED


def actor_satisfies(rule: str, *, is_admin: bool, is_requester: bool, is_target: bool) -> bool:
    if rule == ADMIN:
        return is_admin
    if rule == TARGET:
        return is_target
    if rule == REQUESTER:
        return is_requester
    return False


def opens_channel(kind: MediationKind, to_status: MediationStatus) -> bool:
    return kind == MediationKind.COMMUNICATION and to_status in CHANNEL_OPENING_STATUSES
