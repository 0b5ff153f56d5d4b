"""Retrying transient service failures, and reading run rate-limit hints.

Two kinds of waiting happen around a run. A single service call that
fails with a transient error (timeout, overload, HTTP rate limit) is
retried here with exponential backoff. A *run* that the service marks
``failed`` with a "try again in 2m54.355s" hint is handled by the engine,
which asks :func:`rate_limit_backoff_ms` how long to wait.

Backoff waits can be cut short by a cancellation event so that a pending
cancel is acted on without sitting out the full delay.
"""

from __future__ import annotations

import asyncio
import logging
import random
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, TypeVar

from tether.core.errors import (
    ServiceOverloadedError,
    ServiceRateLimitError,
    ServiceTimeoutError,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from tether.config.schema import RetrySettings

T = TypeVar("T")

logger = logging.getLogger(__name__)

TRANSIENT_ERRORS: tuple[type[Exception], ...] = (
    ServiceRateLimitError,
    ServiceTimeoutError,
    ServiceOverloadedError,
)

# e.g. "Rate limit reached ... Please try again in 2m54.355s."
_RATE_LIMIT_WAIT = re.compile(r"in (\d+)m(\d+)\.(\d+)s")


@dataclass(frozen=True, slots=True)
class RetryConfig:
    """Backoff policy for transient service call failures."""

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 60.0
    jitter: bool = True

    @classmethod
    def from_settings(cls, settings: RetrySettings) -> RetryConfig:
        return cls(
            max_retries=settings.max_retries,
            base_delay=settings.base_delay,
            max_delay=settings.max_delay,
            jitter=settings.jitter,
        )

    def delay_for(self, attempt: int, error: Exception) -> float:
        """Seconds to wait before retry number ``attempt + 1``.

        A ``retry_after`` carried by a rate-limit error is used as is
        (capped at ``max_delay``) and never jittered.
        """
        if isinstance(error, ServiceRateLimitError) and error.retry_after is not None:
            return min(error.retry_after, self.max_delay)
        delay = min(self.base_delay * (2**attempt), self.max_delay)
        if self.jitter:
            delay *= random.uniform(0.5, 1.5)
        return delay


def is_retryable(error: Exception) -> bool:
    """Check if an error should trigger a retry."""
    return isinstance(error, TRANSIENT_ERRORS)


def rate_limit_backoff_ms(detail: str | None) -> int | None:
    """Backoff in milliseconds for a run that failed on a rate limit.

    Returns ``(minutes * 60 + seconds + 1) * 1000`` when *detail* carries a
    wait hint of the form ``in <m>m<s>.<ms>s``, otherwise None. The
    millisecond part is dropped; the extra second covers it.
    """
    if not detail:
        return None
    match = _RATE_LIMIT_WAIT.search(detail)
    if match is None:
        return None
    minutes, seconds = int(match.group(1)), int(match.group(2))
    return (minutes * 60 + seconds + 1) * 1000


async def _pause(delay: float, cancel: asyncio.Event | None) -> None:
    """Sleep *delay* seconds, returning early once *cancel* is set."""
    if cancel is None:
        await asyncio.sleep(delay)
        return
    try:
        await asyncio.wait_for(cancel.wait(), timeout=delay)
    except TimeoutError:
        return
    logger.debug("Backoff cut short by cancellation")


async def retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    config: RetryConfig | None = None,
    on_retry: Callable[[int, float, Exception], None] | None = None,
    *,
    cancel: asyncio.Event | None = None,
) -> T:
    """Call *fn*, retrying transient service errors with backoff.

    Non-transient errors propagate on the first failure, transient ones
    after ``max_retries`` retries. While *cancel* is set the retries
    still happen but without waiting in between, so the caller gets
    control back quickly.

    Args:
        fn: Zero-arg callable returning an awaitable.
        config: Backoff policy. Uses defaults if None.
        on_retry: Optional ``(attempt, delay, error)`` hook called
            before each wait.
        cancel: Event that, once set, ends backoff waits early.
    """
    cfg = config or RetryConfig()
    attempt = 0
    while True:
        try:
            return await fn()
        except TRANSIENT_ERRORS as e:
            if attempt >= cfg.max_retries:
                raise
            cancelled = cancel is not None and cancel.is_set()
            delay = 0.0 if cancelled else cfg.delay_for(attempt, e)
            attempt += 1
            if on_retry is not None:
                on_retry(attempt, delay, e)
            await _pause(delay, cancel)
