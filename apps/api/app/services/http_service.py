"""HTTP helpers with retry/backoff for notification providers."""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Awaitable, Callable

import httpx

logger = logging.getLogger(__name__)

DEFAULT_RETRY_STATUSES = {429, 500, 502, 503, 504}


def _backoff(attempt: int, base_delay: float, max_delay: float) -> float:
    delay = min(max_delay, base_delay * (2**attempt))
    if delay:
        delay = delay + random.uniform(0, delay / 2)
    return delay


async def request_with_retries(
    request_fn: Callable[[], Awaitable[httpx.Response]],
    *,
    max_attempts: int = 3,
    base_delay: float = 0.5,
    max_delay: float = 4.0,
    retry_statuses: set[int] | None = None,
) -> httpx.Response:
    """
    Execute an HTTP request with exponential backoff retries.

    Retries transport errors and the statuses in ``retry_statuses``; the
    last response (or error) is returned (or raised) unchanged.
    """
    statuses = retry_statuses or DEFAULT_RETRY_STATUSES
    last_attempt = max_attempts - 1

    for attempt in range(max_attempts):
        try:
            response = await request_fn()
        except httpx.RequestError as exc:
            if attempt >= last_attempt:
                raise
            logger.warning("Provider request failed, retrying", exc_info=exc)
            await asyncio.sleep(_backoff(attempt, base_delay, max_delay))
            continue

        if response.status_code in statuses and attempt < last_attempt:
            logger.warning("Provider returned %s, retrying", response.status_code)
            await asyncio.sleep(_backoff(attempt, base_delay, max_delay))
            continue

        return response

    return response
