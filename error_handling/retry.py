"""Bounded exponential backoff for upstream and conflict failures."""
import asyncio
import random
from typing import Any, Awaitable, Callable, Optional, Tuple, Type, TypeVar

import structlog

from .exceptions import ConflictError, UpstreamError

logger = structlog.get_logger()

T = TypeVar('T')


class RetryPolicy:
    """
    Retries an async operation with exponential backoff.

    Only transient failures (upstream errors and revision conflicts) are
    retried. Everything else, validation errors included, propagates on the
    first attempt.

    Delays grow as ``base_delay * 2 ** (attempt - 1)`` capped at ``max_delay``,
    with up to ``jitter`` seconds of random spread added.
    """

    def __init__(self, max_attempts: int = 1, base_delay: float = 0.5,
                 max_delay: float = 8.0, jitter: float = 0.0,
                 retry_on: Tuple[Type[BaseException], ...] = (UpstreamError, ConflictError)):
        """
        Initialize a new retry policy.

        Args:
            max_attempts: Total number of attempts, 1 disables retrying
            base_delay: Delay in seconds before the first retry
            max_delay: Upper bound for a single delay in seconds
            jitter: Maximum random seconds added to each delay
            retry_on: Exception types considered transient
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.jitter = jitter
        self.retry_on = retry_on

    @classmethod
    def from_settings(cls, settings) -> 'RetryPolicy':
        return cls(
            max_attempts=settings.retry_max_attempts,
            base_delay=settings.retry_base_delay,
            max_delay=settings.retry_max_delay,
            jitter=settings.retry_jitter,
        )

    def delay_for(self, attempt: int) -> float:
        """Delay in seconds before retrying after ``attempt`` failed attempts."""
        delay = min(self.max_delay, self.base_delay * (2 ** (attempt - 1)))
        if self.jitter:
            delay += random.uniform(0, self.jitter)
        return delay

    async def call(self, func: Callable[..., Awaitable[T]], *args: Any,
                   operation: Optional[str] = None, **kwargs: Any) -> T:
        """
        Call ``func`` until it succeeds or attempts are exhausted.

        Raises:
            The last exception raised by ``func``
        """
        name = operation or getattr(func, '__name__', 'operation')
        attempt = 0

        while True:
            attempt += 1
            try:
                return await func(*args, **kwargs)
            except self.retry_on as e:
                if attempt >= self.max_attempts:
                    if self.max_attempts > 1:
                        logger.warning("retry_exhausted",
                                       operation=name,
                                       attempts=attempt,
                                       error=str(e))
                    raise

                delay = self.delay_for(attempt)
                logger.info("retry_scheduled",
                            operation=name,
                            attempt=attempt,
                            delay=delay,
                            error=str(e))
                await asyncio.sleep(delay)
