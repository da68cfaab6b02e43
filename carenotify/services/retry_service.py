"""Retry helpers with bounded exponential backoff.

call_with_retries wraps synchronous store writes made by the dispatcher;
request_with_retries wraps outbound httpx calls made by delivery jobs.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from typing import Awaitable, Callable, TypeVar

import httpx
from sqlalchemy.exc import OperationalError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_RETRY_STATUSES = {429, 500, 502, 503, 504}

# Connection drops, lock timeouts and serialization failures surface as these.
TRANSIENT_DB_ERRORS: tuple[type[BaseException], ...] = (OperationalError,)


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Delay before retry number `attempt` (0-based), with up to 50% jitter."""
    delay = min(max_delay, base_delay * (2**attempt))
    if delay:
        delay = delay + random.uniform(0, delay / 2)
    return delay


def call_with_retries(
    fn: Callable[[], T],
    *,
    max_attempts: int = 3,
    base_delay: float = 0.2,
    max_delay: float = 2.0,
    retry_on: tuple[type[BaseException], ...] = TRANSIENT_DB_ERRORS,
    on_retry: Callable[[BaseException], None] | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Call fn, retrying transient failures up to max_attempts in total.

    on_retry runs before each retry (the dispatcher rolls the session back
    there). The last exception propagates once the budget is spent.
    """
    for attempt in range(max_attempts):
        try:
            return fn()
        except retry_on as exc:
            if attempt >= max_attempts - 1:
                raise
            logger.warning(
                "Store write failed (%s), retrying (attempt %s/%s)",
                type(exc).__name__,
                attempt + 1,
                max_attempts,
            )
            if on_retry:
                on_retry(exc)
            delay = backoff_delay(attempt, base_delay, max_delay)
            if delay:
                sleep(delay)
    raise RuntimeError("call_with_retries requires max_attempts >= 1")


async def request_with_retries(
    request_fn: Callable[[], Awaitable[httpx.Response]],
    *,
    max_attempts: int = 3,
    base_delay: float = 0.5,
    max_delay: float = 4.0,
    retry_statuses: set[int] | None = None,
) -> httpx.Response:
    """Execute an HTTP request with exponential backoff retries."""
    statuses = retry_statuses or DEFAULT_RETRY_STATUSES

    for attempt in range(max_attempts):
        try:
            response = await request_fn()
        except httpx.RequestError as exc:
            if attempt >= max_attempts - 1:
                raise
            logger.warning("HTTP request failed, retrying", exc_info=exc)
            delay = backoff_delay(attempt, base_delay, max_delay)
            if delay:
                await asyncio.sleep(delay)
            continue

        if response.status_code in statuses and attempt < max_attempts - 1:
            logger.warning("HTTP request returned %s, retrying", response.status_code)
            delay = backoff_delay(attempt, base_delay, max_delay)
            if delay:
                await asyncio.sleep(delay)
            continue

        return response

    return response
