"""Shared mutable state owned by one engine instance."""
import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Dict, Optional, Set

import structlog

from cache.core import DocumentCache
from cache.monitoring import CacheMonitor
from cache.pubsub import PubSub
from cache.store import DocumentStore, create_store
from config.logging import log_error
from config.settings import EngineSettings
from error_handling.retry import RetryPolicy
from .coalescer import Coalescer

logger = structlog.get_logger()


@dataclass
class EngineContext:
    """
    Everything the engine components share.

    One ``Database`` owns one context, so separate engines never see each
    other's tracking set, wait table or coalescer queues.
    """
    settings: EngineSettings
    cache: DocumentCache
    coalescer: Coalescer
    retry: RetryPolicy
    tracking: Set[str] = field(default_factory=set)
    detached: Set[str] = field(default_factory=set)
    waits: Dict[str, asyncio.Future] = field(default_factory=dict)
    tasks: Set[asyncio.Task] = field(default_factory=set)

    @classmethod
    def create(cls, settings: Optional[EngineSettings] = None,
               store: Optional[DocumentStore] = None) -> 'EngineContext':
        settings = settings or EngineSettings()
        cache = DocumentCache(
            store=store if store is not None else create_store(settings),
            pubsub=PubSub(),
            monitor=CacheMonitor(),
        )
        return cls(
            settings=settings,
            cache=cache,
            coalescer=Coalescer(max_depth=settings.coalescer_max_depth),
            retry=RetryPolicy.from_settings(settings),
        )

    @property
    def pubsub(self) -> PubSub:
        return self.cache.pubsub

    def spawn(self, awaitable: Awaitable, name: str) -> asyncio.Task:
        """
        Run ``awaitable`` in the background.

        Failures are logged; the task is cancelled by ``shutdown``.
        """
        task = asyncio.ensure_future(awaitable)
        self.tasks.add(task)

        def _done(finished: asyncio.Task) -> None:
            self.tasks.discard(finished)
            if finished.cancelled():
                return
            error = finished.exception()
            if error is not None:
                log_error(logger, error, {"task": name})

        task.add_done_callback(_done)
        return task

    async def drain(self) -> None:
        """Wait until no background task is left."""
        while self.tasks:
            await asyncio.gather(*list(self.tasks), return_exceptions=True)
        await self.pubsub.drain()

    async def shutdown(self) -> None:
        for task in list(self.tasks):
            task.cancel()
        if self.tasks:
            await asyncio.gather(*list(self.tasks), return_exceptions=True)
        self.tasks.clear()
        await self.cache.store.close()
