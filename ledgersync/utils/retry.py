"""Bounded retry with exponential backoff.

One loop, two flavours (sync for Session-bound services, async for the
sync engine). The caller decides which errors are worth another attempt;
everything else propagates on the first failure.

Usage:
    policy = RetryPolicy(attempts=3, base_delay=0.2, max_delay=2.0)
    journal = call_with_retry(lambda: _generate_and_save(db, day), policy,
                              retry_on=is_conflict, label=f"journal {day}")
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from ..errors import ConflictError

log = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    attempts: int = 3
    base_delay: float = 0.2
    max_delay: float = 2.0

    def delay_for(self, attempt: int) -> float:
        """Delay after the given failed attempt (1-based)."""
        return min(self.base_delay * (2**attempt), self.max_delay)


def is_conflict(exc: BaseException) -> bool:
    return isinstance(exc, ConflictError)


def call_with_retry(
    fn: Callable[[], T],
    policy: RetryPolicy,
    retry_on: Callable[[BaseException], bool] = is_conflict,
    label: str = "operation",
) -> T:
    """Run fn until it succeeds, a non-retryable error escapes, or attempts run out."""
    attempt = 1
    while True:
        try:
            return fn()
        except Exception as e:
            if not retry_on(e):
                raise
            if attempt >= policy.attempts:
                log.warning(f"{label}: giving up after {attempt} attempts: {e}")
                raise
            delay = policy.delay_for(attempt)
            log.info(f"{label}: retrying (attempt {attempt + 1}) in {delay:.2f}s: {e}")
            time.sleep(delay)
            attempt += 1


async def acall_with_retry(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    retry_on: Callable[[BaseException], bool] = is_conflict,
    label: str = "operation",
) -> T:
    """Async twin of call_with_retry; sleeps without blocking the loop."""
    attempt = 1
    while True:
        try:
            return await fn()
        except Exception as e:
            if not retry_on(e):
                raise
            if attempt >= policy.attempts:
                log.warning(f"{label}: giving up after {attempt} attempts: {e}")
                raise
            delay = policy.delay_for(attempt)
            log.info(f"{label}: retrying (attempt {attempt + 1}) in {delay:.2f}s: {e}")
            await asyncio.sleep(delay)
            attempt += 1
