"""Exponential backoff for idempotent reads of live cluster state.

Only reads go through here.  Whether a failed *apply* is retried is decided
by the fixpoint loop in :mod:`schema_engine.executor.writer`, never by
blind repetition of the same commands.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from typing import TypeVar

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryConfig(BaseModel):
    """Backoff parameters for re-observing live state."""

    max_retries: int = Field(
        default=3,
        ge=0,
        description="Retries after the first attempt before the last error is re-raised.",
    )
    base_delay: float = Field(
        default=1.0,
        gt=0.0,
        description="Delay in seconds before the first retry; doubles on each retry.",
    )
    max_delay: float = Field(
        default=30.0,
        gt=0.0,
        description="Upper bound on a single delay in seconds.",
    )
    jitter: bool = Field(
        default=True,
        description="Randomise each delay within [0.5x, 1.5x].",
    )

    def delay_for(self, attempt: int) -> float:
        """Backoff delay after the zero-based *attempt*."""
        delay = min(self.base_delay * (2**attempt), self.max_delay)
        if self.jitter:
            delay *= random.uniform(0.5, 1.5)  # noqa: S311
        return delay


async def async_retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    config: RetryConfig,
    retryable_exceptions: tuple[type[Exception], ...] = (Exception,),
    operation: str = "read",
) -> T:
    """Await ``fn()`` until it succeeds or *config* runs out of retries.

    Parameters
    ----------
    fn:
        Zero-argument coroutine factory.  Called afresh for every attempt, so
        it must be safe to repeat.
    config:
        Backoff parameters.
    retryable_exceptions:
        Exception types that trigger a retry; anything else propagates at
        once.  ``asyncio.CancelledError`` is never retried.
    operation:
        Label used in log messages.

    Raises
    ------
    Exception
        The last retryable error once all attempts are exhausted.
    """
    attempt = 0
    while True:
        try:
            return await fn()
        except retryable_exceptions as exc:
            if attempt >= config.max_retries:
                logger.error("%s failed after %d attempts: %s", operation, attempt + 1, exc)
                raise
            delay = config.delay_for(attempt)
            attempt += 1
            logger.warning(
                "%s failed, retry %d/%d after %.1fs: %s",
                operation,
                attempt,
                config.max_retries,
                delay,
                exc,
            )
            await asyncio.sleep(delay)
