"""Tests for tracking addresses and merging their transaction history."""
import asyncio
from decimal import Decimal

import pytest

from blockchain.context import EngineContext
from blockchain.database import Database
from cache.store import MemoryDocumentStore
from config.settings import EngineSettings
from error_handling.exceptions import ConflictError, PersistenceError, UpstreamError, ValidationError

from .conftest import OTHER, WALLET, FakeNotificationService, tx_hash


def history_entry(n, block, sender=WALLET, to=OTHER, value=1):
    return {"hash": tx_hash(n), "from": sender, "to": to, "value": value, "blockNumber": block}


class FailingStore(MemoryDocumentStore):
    """Memory store refusing writes to some keys."""

    def __init__(self, fail_keys):
        super().__init__()
        self.fail_keys = set(fail_keys)

    async def put(self, key, value, revision=None):
        if key in self.fail_keys:
            raise ConflictError(key, revision)
        return await super().put(key, value, revision)


def test_track_merges_history_and_advances_watermark(database, provider):
    provider.history[WALLET] = [history_entry(1, 10), history_entry(2, 15)]

    async def scenario():
        await database.track(address=WALLET)
        first = await database.accounts.fetch_account(WALLET)

        provider.history[WALLET].append(history_entry(3, 20))
        await database.track(address=WALLET)
        second = await database.accounts.fetch_account(WALLET)

        await database.context.drain()
        await database.close()
        return first, second

    first, second = asyncio.run(scenario())

    assert first.last_block == 15
    assert first.transactions == {tx_hash(1), tx_hash(2)}
    assert second.last_block == 20
    assert second.transactions == {tx_hash(1), tx_hash(2), tx_hash(3)}
    assert provider.count("get_history", WALLET, 0) == 1
    assert provider.count("get_history", WALLET, 15) == 1


def test_transactions_are_cached_by_hash(database, provider):
    provider.history[WALLET] = [history_entry(1, 10, sender=OTHER, to=WALLET, value=25)]

    async def scenario():
        await database.track(address=WALLET.upper().replace("0X", "0x"))
        doc = await database.context.cache.get(tx_hash(1))
        transactions = await database.accounts.fetch_transactions(WALLET)
        await database.close()
        return doc, transactions

    doc, transactions = asyncio.run(scenario())

    assert doc.exists
    assert doc.payload["uuid"] == tx_hash(1)
    assert doc.payload["from"] == OTHER
    assert doc.payload["value"] == Decimal(25)
    assert [record.hash for record in transactions] == [tx_hash(1)]
    assert transactions[0].counterparties() == {OTHER, WALLET}


def test_live_feed_is_attached_once(database, notifications):
    async def scenario():
        await database.track(address=WALLET)
        await database.track(address=WALLET)
        await database.close()

    asyncio.run(scenario())

    assert database.is_tracked(WALLET)
    assert len(notifications.address_callbacks[WALLET]) == 1
    assert database.detached == frozenset()


def test_failed_registration_leaves_address_detached(database, notifications):
    notifications.failing = True

    async def scenario():
        assert await database.track(address=WALLET)
        detached = database.detached

        notifications.failing = False
        reattached = await database.retry_live_feed(WALLET)
        await database.close()
        return detached, reattached

    detached, reattached = asyncio.run(scenario())

    assert detached == {WALLET}
    assert reattached is True
    assert database.detached == frozenset()
    assert database.tracking == {WALLET}
    assert len(notifications.address_callbacks[WALLET]) == 1


def test_without_notification_service_addresses_stay_detached(provider, context):
    database = Database(provider, context=context)

    async def scenario():
        await database.track(address=WALLET)
        retried = await database.retry_live_feed(WALLET)
        await database.close()
        return retried

    assert asyncio.run(scenario()) is False
    assert database.detached == {WALLET}


def test_history_failure_leaves_account_untouched(database, provider):
    provider.history[WALLET] = [history_entry(1, 10)]
    provider.failures["get_history"] = 1

    async def scenario():
        with pytest.raises(UpstreamError):
            await database.track(address=WALLET)
        untracked = not database.is_tracked(WALLET)
        stored = await database.context.cache.get(WALLET)

        await database.track(address=WALLET)
        account = await database.accounts.fetch_account(WALLET)
        await database.close()
        return untracked, stored, account

    untracked, stored, account = asyncio.run(scenario())

    assert untracked
    assert not stored.exists
    assert account.last_block == 10
    assert database.context.coalescer.keys() == []


def test_unsaved_account_raises_persistence_error(provider, notifications, settings):
    context = EngineContext.create(settings, FailingStore([WALLET]))
    database = Database(provider, notifications, context=context)
    provider.history[WALLET] = [history_entry(1, 10)]

    async def scenario():
        with pytest.raises(PersistenceError):
            await database.track(address=WALLET)
        doc = await context.cache.get(tx_hash(1))
        await database.close()
        return doc

    # Transactions were written before the account save failed
    assert asyncio.run(scenario()).exists
    assert not database.is_tracked(WALLET)


def test_track_retries_transient_failures(provider, notifications):
    settings = EngineSettings(retry_max_attempts=3, retry_base_delay=0.0)
    database = Database(provider, notifications, settings=settings, store=MemoryDocumentStore())
    provider.history[WALLET] = [history_entry(1, 12)]
    provider.failures["get_history"] = 2

    async def scenario():
        await database.track(address=WALLET)
        account = await database.accounts.fetch_account(WALLET)
        await database.close()
        return account

    assert asyncio.run(scenario()).last_block == 12
    assert provider.count("get_history") == 3


def test_concurrent_tracks_do_not_lose_transactions(database, provider):
    provider.history[WALLET] = [history_entry(n, n) for n in range(1, 6)]

    async def scenario():
        await asyncio.gather(*(database.track(address=WALLET) for _ in range(3)))
        account = await database.accounts.fetch_account(WALLET)
        await database.close()
        return account

    account = asyncio.run(scenario())

    assert account.transactions == {tx_hash(n) for n in range(1, 6)}
    assert account.last_block == 5


def test_live_transaction_refreshes_tracked_counterparties(database, provider, notifications):
    provider.balances[WALLET] = 3 * 10 ** 18

    async def scenario():
        await database.track(address=WALLET)
        await database.context.drain()
        provider.calls.clear()

        callback = notifications.address_callbacks[WALLET][0]
        record = await callback(history_entry(9, 30, sender=OTHER, to=WALLET, value=7))
        await database.context.drain()

        doc = await database.context.cache.get(tx_hash(9))
        await database.close()
        return record, doc

    record, doc = asyncio.run(scenario())

    assert record.hash == tx_hash(9)
    assert doc.payload["value"] == Decimal(7)
    assert provider.count("get_balance", WALLET) == 1
    assert provider.count("get_balance", OTHER) == 0


def test_track_transaction_subscribes_to_updates(database, notifications):
    hash_ = tx_hash(77)

    async def scenario():
        await database.track(transaction_hash=hash_)
        callback = notifications.transaction_callbacks[hash_][0]
        await callback({"hash": hash_, "from": WALLET, "to": OTHER, "value": 1, "blockNumber": 3})
        doc = await database.context.cache.get(hash_)
        await database.close()
        return doc

    assert asyncio.run(scenario()).payload["block_number"] == 3


def test_track_validates_inputs(database):
    with pytest.raises(ValidationError):
        asyncio.run(database.track(address="not-an-address"))

    with pytest.raises(ValidationError):
        asyncio.run(database.track(transaction_hash="0x1234"))

    assert database.tracking == frozenset()


class PushingNotificationService(FakeNotificationService):
    """Feed that calls its callbacks like an event emitter, without awaiting."""

    def deliver(self, address, event):
        for callback in self.address_callbacks[address]:
            callback(event)


def test_synchronous_feed_delivery_is_persisted(provider, context):
    notifications = PushingNotificationService()
    database = Database(provider, notifications, context=context)

    async def scenario():
        await database.track(address=WALLET)
        notifications.deliver(WALLET, history_entry(9, 30, sender=OTHER, to=WALLET))
        await database.context.drain()
        doc = await database.context.cache.get(tx_hash(9))
        await database.close()
        return doc

    doc = asyncio.run(scenario())

    assert doc.exists
    assert doc.payload["block_number"] == 30


def test_feed_delivery_from_another_thread(provider, context):
    notifications = PushingNotificationService()
    database = Database(provider, notifications, context=context)

    async def scenario():
        await database.track(address=WALLET)
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(
            None, notifications.deliver, WALLET, history_entry(10, 31, sender=OTHER, to=WALLET)
        )
        # The update is scheduled with call_soon_threadsafe
        await asyncio.sleep(0)
        await database.context.drain()
        doc = await database.context.cache.get(tx_hash(10))
        await database.close()
        return doc

    assert asyncio.run(scenario()).exists
