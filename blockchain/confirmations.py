"""
Transaction confirmation waits.

One future is kept per transaction hash. Every caller waiting on the same
hash gets the same future, which resolves with the provider's receipt when
the transaction settles. A wait that times out is dropped from the table and
its future is abandoned: it stays pending, and the outcome is unknown rather
than failed.
"""
import asyncio
from typing import Any, Dict, List, Optional

import structlog

from error_handling.exceptions import UpstreamError
from .context import EngineContext
from .providers import ChainProvider, call_collaborator
from .validation import validate_is_transaction_hash

logger = structlog.get_logger()


class ConfirmationWaiter:
    """Resolves futures when transactions are observed settled."""

    def __init__(self, context: EngineContext, provider: ChainProvider):
        self.context = context
        self.provider = provider
        self._timers: Dict[str, asyncio.TimerHandle] = {}

    @property
    def waits(self) -> Dict[str, asyncio.Future]:
        return self.context.waits

    def pending(self) -> List[str]:
        """Hashes with an outstanding wait."""
        return sorted(self.waits)

    async def wait_for_transaction(self, transaction_hash: str,
                                   timeout: Optional[float] = None) -> asyncio.Future:
        """
        Get a future resolved when ``transaction_hash`` settles.

        Args:
            transaction_hash: 0x-prefixed 32 byte hash
            timeout: Seconds before the wait is abandoned, the configured
                default when omitted

        Returns:
            The shared future for this hash

        Raises:
            InvalidArgument: If the hash is malformed
            UpstreamError: If the settlement subscription cannot be registered
        """
        transaction_hash = validate_is_transaction_hash(
            transaction_hash, prefix="ConfirmationWaiter.wait_for_transaction:"
        )

        existing = self.waits.get(transaction_hash)
        if existing is not None:
            return existing

        loop = asyncio.get_running_loop()
        future = loop.create_future()
        self.waits[transaction_hash] = future

        if timeout is None:
            timeout = self.context.settings.wait_timeout
        if timeout is not None:
            self._timers[transaction_hash] = loop.call_later(
                timeout, self._expire, transaction_hash, future
            )

        def _settled(receipt: Any = None) -> None:
            try:
                running = asyncio.get_running_loop()
            except RuntimeError:
                running = None

            if running is loop:
                self._settle(transaction_hash, future, receipt)
            else:
                loop.call_soon_threadsafe(self._settle, transaction_hash, future, receipt)

        try:
            await call_collaborator("onSettled", self.provider.on_settled, transaction_hash, _settled)
        except UpstreamError:
            self._clear(transaction_hash, future)
            future.cancel()
            raise

        logger.debug("transaction_wait_registered", hash=transaction_hash, timeout=timeout)
        return future

    def _clear(self, transaction_hash: str, future: asyncio.Future) -> bool:
        if self.waits.get(transaction_hash) is not future:
            return False

        del self.waits[transaction_hash]
        timer = self._timers.pop(transaction_hash, None)
        if timer is not None:
            timer.cancel()
        return True

    def _settle(self, transaction_hash: str, future: asyncio.Future, receipt: Any) -> None:
        # Settlement after expiry is ignored
        if not self._clear(transaction_hash, future):
            return

        if not future.done():
            future.set_result(receipt)
        logger.info("transaction_settled", hash=transaction_hash)

    def _expire(self, transaction_hash: str, future: asyncio.Future) -> None:
        self._timers.pop(transaction_hash, None)
        if self.waits.get(transaction_hash) is future:
            del self.waits[transaction_hash]
            logger.info("transaction_wait_expired", hash=transaction_hash)

    def close(self) -> None:
        """Cancel every outstanding wait and timer."""
        for transaction_hash, future in list(self.waits.items()):
            self._clear(transaction_hash, future)
            future.cancel()
