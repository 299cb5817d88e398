# src/pitchfork_ingest/scraper/retry.py

"""Wait-out-the-rate-limiter retry loop shared by the fetcher and catalog."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from pitchfork_ingest.errors import NetworkError, RateLimitError, ServerError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_ERROR_DELAY = 30.0

SleepFunc = Callable[[float], Awaitable[None]]


async def call_with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    description: str,
    error_delay: float = DEFAULT_ERROR_DELAY,
    max_attempts: int | None = None,
    sleep: SleepFunc = asyncio.sleep,
) -> T:
    """Await ``operation()`` until it succeeds.

    RateLimitError sleeps for the server's Retry-After hint (or
    ``error_delay`` when there is none). NetworkError and ServerError sleep
    ``error_delay``. Retries are unbounded unless ``max_attempts`` is given,
    in which case the last error is re-raised once the attempts are used up.
    Any other exception propagates immediately.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return await operation()
        except RateLimitError as exc:
            if max_attempts is not None and attempt >= max_attempts:
                raise
            delay = (
                exc.retry_after_seconds
                if exc.retry_after_seconds is not None
                else error_delay
            )
            logger.warning(
                "Rate limited on %s (attempt=%s). Waiting %.0fs before retrying.",
                description,
                attempt,
                delay,
            )
        except (NetworkError, ServerError) as exc:
            if max_attempts is not None and attempt >= max_attempts:
                raise
            delay = error_delay
            logger.warning(
                "%s on %s (attempt=%s): %s. Waiting %.0fs before retrying.",
                type(exc).__name__,
                description,
                attempt,
                exc,
                delay,
            )

        await sleep(delay)
