"""SQLAlchemy ORM models."""

from app.db.models.accounts import Account, AliasBinding
from app.db.models.conversations import Conversation, ConversationParticipant, Message
from app.db.models.jobs import Job
from app.db.models.mediation import MediationRequest, MediationRequestEvent

__all__ = [
    "Account",
    "AliasBinding",
    "Conversation",
    "ConversationParticipant",
    "Job",
    "MediationRequest",
    "MediationRequestEvent",
    "Message",
]
