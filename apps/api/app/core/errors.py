"""Domain errors for mediation, channel and messaging operations.

Every error carries a stable ``code`` (sent to web and socket clients) and the
HTTP status the API maps it to. Messages reference ids and aliases only.
"""


class MediationError(Exception):
    """Base exception for mediation workflow errors."""

    code = "server_error"
    status_code = 500
    default_message = "Request failed"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.default_message)

    @property
    def message(self) -> str:
        return str(self)

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message}


class ValidationError(MediationError):
    """Malformed payload or message content."""

    code = "validation_error"
    status_code = 422
    default_message = "Invalid input"


class Unauthorized(MediationError):
    """Actor lacks the capability or role for this action."""

    code = "unauthorized"
    status_code = 403
    default_message = "Not authorized for this action"


class NotFound(MediationError):
    """Request, conversation or account not found (or not visible to the actor)."""

    code = "not_found"
    status_code = 404
    default_message = "Not found"


class InvalidTransition(MediationError):
    """Transition is not an edge of the state machine."""

    code = "invalid_transition"
    status_code = 409
    default_message = "Transition not allowed"


class StaleState(MediationError):
    """Expected prior status no longer matches the stored status."""

    code = "stale_state"
    status_code = 409
    default_message = "Request was modified concurrently"


class DuplicatePending(MediationError):
    """An active request of the same kind already exists for the pair."""

    code = "duplicate_pending"
    status_code = 409
    default_message = "An active request already exists"


class ChannelSuspended(MediationError):
    """Channel gate is not open."""

    code = "channel_suspended"
    status_code = 423
    default_message = "Message limit reached, waiting for admin approval"


class RateLimited(MediationError):
    """Per-identity event rate exceeded."""

    code = "rate_limited"
    status_code = 429
    default_message = "Rate limit exceeded, slow down"


class ServerError(MediationError):
    """Unexpected persistence or infrastructure failure."""
