"""Tests for per-identity realtime event throttling."""

import uuid

import pytest

from app.core.errors import RateLimited
from app.core.rate_limit import EventRateLimiter, build_event_limiter


def test_limit_per_identity():
    limiter = EventRateLimiter(events=3, window_seconds=60)
    alice, bob = uuid.uuid4(), uuid.uuid4()

    for _ in range(3):
        limiter.hit(alice)
    with pytest.raises(RateLimited) as exc_info:
        limiter.hit(alice)

    assert exc_info.value.code == "rate_limited"
    assert exc_info.value.status_code == 429
    # Other identities have their own window
    limiter.hit(bob)
    assert limiter.remaining(bob) == 2


def test_reset_clears_windows():
    limiter = EventRateLimiter(events=1, window_seconds=60)
    identity = uuid.uuid4()
    limiter.hit(identity)

    limiter.reset()

    limiter.hit(identity)


def test_build_event_limiter_uses_settings(monkeypatch):
    from app.core.config import settings

    monkeypatch.setattr(settings, "CHAT_RATE_LIMIT_EVENTS", 7)
    monkeypatch.setattr(settings, "CHAT_RATE_LIMIT_WINDOW_SECONDS", 30)

    limiter = build_event_limiter()

    assert limiter.events == 7
    assert limiter.window_seconds == 30
