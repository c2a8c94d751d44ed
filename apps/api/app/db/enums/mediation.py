"""Mediation request enums."""

from enum import Enum


class MediationKind(str, Enum):
    """What a mediation request asks for."""

    PRODUCT_INTEREST = "product-interest"  # Investor interest in a founder's product
    COMMUNICATION = "communication"  # Request to open a moderated chat
    CALL = "call"  # Request for a staff-scheduled video call


class MediationStatus(str, Enum):
    """
    Status of a mediation request.

    Interest/communication workflow:
        submitted → admin-reviewing → forwarded-to-counterparty
        → counterparty-responded → admin-reviewing-response
        → approved-disclosed / rejected / revision-requested
    Call workflow:
        pending → approved → scheduled → completed (or rejected)
    closed-accepted / closed-rejected end any workflow.
    """

    SUBMITTED = "submitted"
    ADMIN_REVIEWING = "admin-reviewing"
    FORWARDED_TO_COUNTERPARTY = "forwarded-to-counterparty"
    COUNTERPARTY_RESPONDED = "counterparty-responded"
    ADMIN_REVIEWING_RESPONSE = "admin-reviewing-response"
    APPROVED_DISCLOSED = "approved-disclosed"
    REVISION_REQUESTED = "revision-requested"
    REJECTED = "rejected"

    PENDING = "pending"
    APPROVED = "approved"
    SCHEDULED = "scheduled"
    COMPLETED = "completed"

    CLOSED_ACCEPTED = "closed-accepted"
    CLOSED_REJECTED = "closed-rejected"

    @classmethod
    def _missing_(cls, value):
        # Role-specific names used by founder/investor dashboards
        aliases = {
            "founder-responded": cls.COUNTERPARTY_RESPONDED,
            "investor-responded": cls.COUNTERPARTY_RESPONDED,
        }
        if isinstance(value, str):
            return aliases.get(value.strip().lower())
        return None


TERMINAL_STATUSES = frozenset(
    {
        MediationStatus.REJECTED,
        MediationStatus.COMPLETED,
        MediationStatus.CLOSED_ACCEPTED,
        MediationStatus.CLOSED_REJECTED,
    }
)

REVIEWING_STATUSES = frozenset(
    {
        MediationStatus.ADMIN_REVIEWING,
        MediationStatus.ADMIN_REVIEWING_RESPONSE,
    }
)


class MediationAction(str, Enum):
    """Audit trail actions recorded in request history."""

    SUBMITTED = "submitted"
    TRANSITIONED = "transitioned"
    RESUBMITTED = "resubmitted"
    CANCELLED = "cancelled"


class CommunicationType(str, Enum):
    """Preferred contact form on a communication request."""

    MEETING = "meeting"
    CALL = "call"
    MESSAGE = "message"
