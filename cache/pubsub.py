"""
Topic based publish/subscribe used to fan out document changes.

Topics are document ids (lowercased natural keys) plus a few named channels
such as ``blockchain.newrecord``. Handlers may be plain callables or
coroutine functions; coroutine handlers are scheduled on the running loop.
"""
import asyncio
import inspect
import uuid
from collections import defaultdict
from typing import Any, Callable, Dict, Optional, Set

import structlog

logger = structlog.get_logger()

NEW_RECORD_TOPIC = 'blockchain.newrecord'


class PubSub:
    """Synchronous fan-out with per-subscription tokens."""

    def __init__(self):
        self._topics: Dict[str, Dict[str, Callable[[str, Any], Any]]] = defaultdict(dict)
        self._tokens: Dict[str, str] = {}
        self._pending: Set[asyncio.Task] = set()

    def subscribe(self, topic: str, handler: Callable[[str, Any], Any]) -> str:
        """
        Register ``handler`` for ``topic``.

        Handlers are called as ``handler(topic, data)``.

        Returns:
            Subscription id accepted by ``unsubscribe``
        """
        if not callable(handler):
            raise TypeError("handler must be callable")

        topic = topic.lower()
        token = uuid.uuid4().hex
        self._topics[topic][token] = handler
        self._tokens[token] = topic
        logger.debug("pubsub_subscribed", topic=topic, token=token)
        return token

    def unsubscribe(self, token: str) -> bool:
        topic = self._tokens.pop(token, None)
        if topic is None:
            return False

        handlers = self._topics.get(topic, {})
        handlers.pop(token, None)
        if not handlers:
            self._topics.pop(topic, None)
        return True

    def publish(self, topic: str, data: Any) -> int:
        """
        Deliver ``data`` to every handler of ``topic``.

        A failing handler is logged and does not stop delivery to the rest.

        Returns:
            Number of handlers invoked
        """
        topic = topic.lower()
        handlers = list(self._topics.get(topic, {}).items())

        for token, handler in handlers:
            try:
                result = handler(topic, data)
                if inspect.isawaitable(result):
                    self._schedule(topic, token, result)
            except Exception as e:
                logger.error("pubsub_handler_failed", topic=topic, token=token, error=str(e))

        return len(handlers)

    def _schedule(self, topic: str, token: str, awaitable) -> None:
        task = asyncio.ensure_future(awaitable)
        self._pending.add(task)

        def _done(finished: asyncio.Task) -> None:
            self._pending.discard(finished)
            if not finished.cancelled() and finished.exception() is not None:
                logger.error("pubsub_handler_failed",
                             topic=topic,
                             token=token,
                             error=str(finished.exception()))

        task.add_done_callback(_done)

    def subscriptions(self, topic: Optional[str] = None) -> int:
        if topic is None:
            return len(self._tokens)
        return len(self._topics.get(topic.lower(), {}))

    def topic_of(self, token: str) -> Optional[str]:
        return self._tokens.get(token)

    async def drain(self) -> None:
        """Wait for scheduled coroutine handlers to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
