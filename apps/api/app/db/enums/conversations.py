"""Conversation / channel enums."""

from enum import Enum


class GateState(str, Enum):
    """
    Channel gate state.

    open → suspended-pending-admin (budget exhausted) → open (admin re-approval)
    closed is terminal.
    """

    OPEN = "open"
    SUSPENDED_PENDING_ADMIN = "suspended-pending-admin"
    ADMIN_APPROVED = "admin-approved"
    CLOSED = "closed"


class DisclosureState(str, Enum):
    """Whether participants may see each other's real identity."""

    LOCKED = "locked"
    UNLOCKED = "unlocked"


class DisclosureBasis(str, Enum):
    """Trust signal that unlocked disclosure."""

    NDA = "nda"
    PAYMENT = "payment"
    ADMIN = "admin"


class ChannelEventType(str, Enum):
    """Realtime event names shared with web clients."""

    CHAT_MESSAGE = "chatMessage"
    MESSAGE_DELIVERED = "messageDelivered"
    MESSAGE_READ = "messageRead"
    LIMIT_REACHED = "limitReached"
    APPROVAL_NEEDED = "approvalNeeded"
    ADMIN_APPROVED = "adminApproved"
    CONVERSATION_HISTORY = "conversationHistory"
    CONVERSATION_CLOSED = "conversationClosed"
    DISCLOSURE_UNLOCKED = "disclosureUnlocked"
    USER_TYPING = "userTyping"
    FORM_SUBMITTED = "formSubmitted"
    FORM_REVIEWED = "formReviewed"
    STATUS_CHANGED = "statusChanged"
    ERROR = "error"


# Events that also fan out to the shared admin room
ADMIN_ROOM_EVENTS = frozenset(
    {
        ChannelEventType.APPROVAL_NEEDED,
        ChannelEventType.FORM_SUBMITTED,
    }
)
