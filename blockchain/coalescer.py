"""
Per-key serialized task queue.

Every operation submitted under a key runs only after all earlier operations
for that key have finished, so at most one operation per key is in flight.
Keys are independent of each other.
"""
import asyncio
from typing import Awaitable, Callable, Dict, TypeVar

import structlog

from cache.monitoring import COALESCER_PENDING, COALESCER_REJECTED
from error_handling.exceptions import KeyBusyError, QueueFullError

logger = structlog.get_logger()

T = TypeVar('T')


class Coalescer:
    """
    FIFO queue per key built on fair ``asyncio.Lock`` acquisition.

    A failing task only fails its own caller; the next queued task for the
    key starts as soon as the failed one has finished.
    """

    def __init__(self, max_depth: int = 64):
        """
        Initialize the coalescer.

        Args:
            max_depth: Maximum running plus waiting operations per key
        """
        if max_depth < 1:
            raise ValueError("max_depth must be at least 1")

        self.max_depth = max_depth
        self._locks: Dict[str, asyncio.Lock] = {}
        self._depth: Dict[str, int] = {}
        self._owners: Dict[str, asyncio.Task] = {}

    def depth(self, key: str) -> int:
        """Number of operations running or waiting for ``key``."""
        return self._depth.get(key.lower(), 0)

    def busy(self, key: str) -> bool:
        return self.depth(key) > 0

    def keys(self):
        return list(self._depth)

    async def run(self, key: str, task: Callable[[], Awaitable[T]],
                  reject_if_busy: bool = False) -> T:
        """
        Run ``task()`` once every earlier task for ``key`` has finished.

        Args:
            key: Coalescing key, compared case-insensitively
            task: Zero-argument callable returning an awaitable
            reject_if_busy: Fail instead of waiting when the key has work

        Returns:
            Whatever ``task`` returns

        Raises:
            KeyBusyError: If ``reject_if_busy`` and the key has work
            QueueFullError: If the key already has ``max_depth`` operations
        """
        key = key.lower()
        current = asyncio.current_task()

        if current is not None and self._owners.get(key) is current:
            # Already inside a task for this key
            return await task()

        depth = self._depth.get(key, 0)
        if depth and reject_if_busy:
            COALESCER_REJECTED.labels(reason='busy').inc()
            raise KeyBusyError(key)
        if depth >= self.max_depth:
            COALESCER_REJECTED.labels(reason='full').inc()
            logger.warning("coalescer_queue_full", key=key, depth=depth)
            raise QueueFullError(key, depth)

        self._depth[key] = depth + 1
        COALESCER_PENDING.inc()
        lock = self._locks.setdefault(key, asyncio.Lock())

        try:
            async with lock:
                self._owners[key] = current
                try:
                    return await task()
                finally:
                    self._owners.pop(key, None)
        finally:
            COALESCER_PENDING.dec()
            remaining = self._depth[key] - 1
            if remaining:
                self._depth[key] = remaining
            else:
                del self._depth[key]
                self._locks.pop(key, None)
