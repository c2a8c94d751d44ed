"""Rate limiting for the HTTP API and for realtime chat events."""

import logging
import os
from uuid import UUID

from limits import RateLimitItemPerSecond
from limits.storage import storage_from_string
from limits.strategies import MovingWindowRateLimiter
from slowapi import Limiter
from slowapi.util import get_remote_address

from app.core.config import settings
from app.core.errors import RateLimited

logger = logging.getLogger(__name__)

# Configure rate limiter with Redis for multi-worker support
# Falls back to in-memory if Redis is not available (dev/test mode)
IS_TESTING = os.getenv("TESTING", "").lower() in ("1", "true", "yes")
DEFAULT_LIMITS = (
    []
    if IS_TESTING or settings.RATE_LIMIT_API <= 0
    else [f"{settings.RATE_LIMIT_API}/minute"]
)


def _build_api_limiter() -> Limiter:
    if IS_TESTING:
        # Use in-memory storage for tests (no Redis dependency)
        return Limiter(
            key_func=get_remote_address,
            storage_uri="memory://",
            default_limits=DEFAULT_LIMITS,
        )
    # Try Redis, fall back to memory if connection fails
    try:
        import redis

        r = redis.from_url(settings.REDIS_URL, socket_connect_timeout=1)
        r.ping()
        return Limiter(
            key_func=get_remote_address,
            storage_uri=settings.REDIS_URL,
            default_limits=DEFAULT_LIMITS,
        )
    except Exception as e:
        logger.warning(f"Redis unavailable for rate limiting, using in-memory: {e}")
        return Limiter(
            key_func=get_remote_address,
            storage_uri="memory://",
            default_limits=DEFAULT_LIMITS,
        )


limiter = _build_api_limiter()


class EventRateLimiter:
    """
    Sliding-window limiter for realtime events, keyed by sender identity.

    Backed by the ``limits`` moving-window strategy (the same engine slowapi
    uses for HTTP routes). State is ephemeral: in-memory by default, Redis
    when CHAT_RATE_LIMIT_STORAGE_URI points at one.
    """

    def __init__(
        self,
        events: int = 10,
        window_seconds: int = 60,
        storage_uri: str = "memory://",
    ):
        self.events = events
        self.window_seconds = window_seconds
        self._item = RateLimitItemPerSecond(events, window_seconds)
        self._storage = storage_from_string(storage_uri)
        self._strategy = MovingWindowRateLimiter(self._storage)

    def hit(self, identity: UUID | str) -> None:
        """
        Consume one slot for ``identity``.

        Raises:
            RateLimited: more than ``events`` in the trailing window
        """
        if not self._strategy.hit(self._item, "chat", str(identity)):
            logger.info(
                "Chat event rate limited",
                extra={"account_id": str(identity), "window_seconds": self.window_seconds},
            )
            raise RateLimited(
                f"Limit of {self.events} events per {self.window_seconds}s exceeded"
            )

    def remaining(self, identity: UUID | str) -> int:
        stats = self._strategy.get_window_stats(self._item, "chat", str(identity))
        return stats.remaining

    def reset(self) -> None:
        self._storage.reset()


def build_event_limiter() -> EventRateLimiter:
    return EventRateLimiter(
        events=settings.CHAT_RATE_LIMIT_EVENTS,
        window_seconds=settings.CHAT_RATE_LIMIT_WINDOW_SECONDS,
        storage_uri=settings.CHAT_RATE_LIMIT_STORAGE_URI,
    )


event_limiter = build_event_limiter()
