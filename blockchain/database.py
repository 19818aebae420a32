"""
Public entry point of the sync engine.

``Database`` tracks accounts, serves balances from the cache while fresher
values are fetched, fans out document changes to subscribers, and waits for
transaction confirmations.
"""
import asyncio
from decimal import Decimal
from typing import Any, Callable, FrozenSet, Optional

import structlog

from cache.core import normalize_key
from cache.store import DocumentStore
from config.settings import EngineSettings
from error_handling.exceptions import UpstreamError
from .confirmations import ConfirmationWaiter
from .constants import NULL_ADDRESS, balance_key
from .context import EngineContext
from .erc20 import NonTokenRegistry, TokenResolver
from .models import Account, TransactionRecord
from .providers import ChainProvider, NotificationService, call_collaborator
from .sync import AccountSynchronizer
from .validation import validate_is_address, validate_is_transaction_hash

logger = structlog.get_logger()


def log_prefix(function_name: str) -> str:
    return f"Database#{function_name}:"


class Database:
    """
    Account tracking and balance cache kept fresh by a chain provider and a
    push notification feed.
    """

    def __init__(self,
                 provider: ChainProvider,
                 notifications: Optional[NotificationService] = None,
                 settings: Optional[EngineSettings] = None,
                 store: Optional[DocumentStore] = None,
                 context: Optional[EngineContext] = None):
        """
        Initialize the database.

        Args:
            provider: Chain reads and settlement events
            notifications: Live transaction feed, addresses stay detached without one
            settings: Engine settings, read from the environment when omitted
            store: Document store, built from settings when omitted
            context: Pre-built engine context, overrides settings and store
        """
        self.context = context or EngineContext.create(settings, store)
        self.provider = provider
        self.notifications = notifications

        self.registry = NonTokenRegistry(self.context)
        self.tokens = TokenResolver(self.context, self.registry)
        self.accounts = AccountSynchronizer(self.context, provider, self.tokens)
        self.confirmations = ConfirmationWaiter(self.context, provider)

        if self.context.settings.debug:
            logger.debug("database_initialized",
                         store=type(self.context.cache.store).__name__,
                         max_depth=self.context.coalescer.max_depth)

    @property
    def settings(self) -> EngineSettings:
        return self.context.settings

    @property
    def tracking(self) -> FrozenSet[str]:
        return frozenset(self.context.tracking)

    @property
    def detached(self) -> FrozenSet[str]:
        """Tracked addresses whose live feed registration failed."""
        return frozenset(self.context.detached)

    def is_tracked(self, address: str) -> bool:
        return address.lower() in self.context.tracking

    async def track(self, address: Optional[str] = None,
                    transaction_hash: Optional[str] = None) -> bool:
        """
        Track an address, a transaction, or both.

        An address is backfilled from its watermark on every call; it is
        attached to the live feed only the first time.

        Raises:
            ValidationError: If the address or hash is malformed
            UpstreamError: If the history fetch fails after every retry
            PersistenceError: If the account cannot be saved
        """
        if address is not None:
            address = validate_is_address(address, prefix=log_prefix("track"))
            await self._track_address(address)

        if transaction_hash is not None:
            transaction_hash = validate_is_transaction_hash(transaction_hash, prefix=log_prefix("track"))
            await self._track_transaction(transaction_hash)

        return True

    async def _track_address(self, address: str) -> Account:
        account = await self.context.retry.call(
            self.accounts.sync_account, address, operation="track"
        )

        if address not in self.context.tracking:
            self.context.tracking.add(address)
            await self._attach_live_feed(address)
            self.context.spawn(self.accounts.refresh_balances(address), name="refresh_balances")

        return account

    async def _attach_live_feed(self, address: str) -> bool:
        if self.notifications is None:
            self.context.detached.add(address)
            logger.warning("live_feed_unavailable", address=address)
            return False

        try:
            await call_collaborator(
                "subscribeToAddress",
                self.notifications.subscribe_to_address,
                address,
                self._live_update(),
            )
        except UpstreamError as e:
            self.context.detached.add(address)
            logger.error("live_feed_registration_failed", address=address, error=str(e))
            return False

        self.context.detached.discard(address)
        logger.info("address_tracked", address=address)
        return True

    async def retry_live_feed(self, address: str) -> bool:
        """
        Re-attempt live feed registration for a detached address.

        Returns:
            True if the address now has a live feed
        """
        address = validate_is_address(address, prefix=log_prefix("retry_live_feed"))
        if address not in self.context.tracking:
            return False
        if address not in self.context.detached:
            return True
        return await self._attach_live_feed(address)

    async def _track_transaction(self, transaction_hash: str) -> None:
        if self.notifications is None:
            logger.warning("live_feed_unavailable", hash=transaction_hash)
            return

        await call_collaborator(
            "subscribeToTransaction",
            self.notifications.subscribe_to_transaction,
            transaction_hash,
            self._live_update(),
        )

    def _live_update(self) -> Callable[[Any], Optional[asyncio.Task]]:
        """
        Build the callback handed to the notification service.

        The feed may call it synchronously from any thread and never has to
        await it: the update is scheduled on the engine's loop. Called on the
        loop, it returns the task so an async feed can still await the record.
        """
        loop = asyncio.get_running_loop()

        def _spawn(update: Any) -> asyncio.Task:
            return self.context.spawn(self.transaction_update(update), name="transaction_update")

        def _callback(update: Any) -> Optional[asyncio.Task]:
            try:
                running = asyncio.get_running_loop()
            except RuntimeError:
                running = None

            if running is loop:
                return _spawn(update)
            loop.call_soon_threadsafe(_spawn, update)
            return None

        return _callback

    async def transaction_update(self, update: Any) -> TransactionRecord:
        """Persist a live feed transaction and refresh tracked balances."""
        return await self.accounts.transaction_update(update)

    async def balance(self, address: str, token: Optional[str] = None) -> Decimal:
        """
        Get the balance of ``address`` in ``token`` (native asset by default).

        A cached value is published and returned at once while a fresh value
        is fetched in the background; without one, the fresh value is awaited.
        The address is tracked if it is not already.

        Raises:
            ValidationError: If the address or token is malformed
            NonTokenError: If ``token`` is not a token contract
            UpstreamError: If the provider fails and nothing is cached
        """
        address = validate_is_address(address, prefix=log_prefix("balance"))
        token = (
            validate_is_address(token, prefix=log_prefix("balance"))
            if token is not None
            else NULL_ADDRESS
        )

        if address not in self.context.tracking and not self.context.coalescer.busy(address):
            self.context.spawn(self.track(address=address), name="track")

        key = balance_key(address, token)
        cached = await self.context.cache.get(key)
        refresh = self.context.retry.call(
            self.accounts.refresh_balance, address, token, operation="balance"
        )

        if cached.exists and cached.payload.get("balance") is not None:
            self.context.cache.publish(key, cached.payload)
            self.context.spawn(refresh, name="refresh_balance")
            return cached.payload["balance"]

        return await refresh

    def subscribe(self, key: str, handler: Callable[[str, Any], Any]) -> str:
        """
        Subscribe to changes of the document ``key``.

        Returns:
            Subscription id for ``unsubscribe``
        """
        return self.context.pubsub.subscribe(normalize_key(key), handler)

    def unsubscribe(self, subscription_id: str) -> bool:
        return self.context.pubsub.unsubscribe(subscription_id)

    async def wait_for_transaction(self, transaction_hash: str,
                                   timeout: Optional[float] = None) -> asyncio.Future:
        return await self.confirmations.wait_for_transaction(transaction_hash, timeout)

    async def close(self) -> None:
        self.confirmations.close()
        await self.context.shutdown()
        logger.debug("database_closed")

    async def __aenter__(self) -> 'Database':
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
