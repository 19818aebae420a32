"""Tests for transaction confirmation waits."""
import asyncio

import pytest

from error_handling.exceptions import InvalidArgument, UpstreamError

from .conftest import tx_hash

HASH = tx_hash(0xBEEF)
RECEIPT = {"status": 1, "blockNumber": 42}


def test_waiters_share_one_future_and_registration(database, provider):
    async def scenario():
        first, second = await asyncio.gather(
            database.wait_for_transaction(HASH),
            database.wait_for_transaction(HASH.upper().replace("0X", "0x")),
        )
        assert first is second
        assert database.confirmations.pending() == [HASH]

        provider.settle(HASH, RECEIPT)
        pending = database.confirmations.pending()
        results = await asyncio.gather(first, second)
        await database.close()
        return pending, results

    pending, results = asyncio.run(scenario())

    assert pending == []
    assert results == [RECEIPT, RECEIPT]
    assert provider.count("on_settled") == 1


def test_timeout_frees_entry_and_abandons_future(database, provider):
    async def scenario():
        future = await database.wait_for_transaction(HASH, timeout=0.01)
        await asyncio.sleep(0.05)
        expired = database.confirmations.pending()

        # A late settlement is ignored
        provider.settle(HASH, RECEIPT)
        done = future.done()

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(asyncio.shield(future), timeout=0.01)

        renewed = await database.wait_for_transaction(HASH, timeout=1)
        await database.close()
        return expired, done, future, renewed

    expired, done, future, renewed = asyncio.run(scenario())

    assert expired == []
    assert not done
    assert renewed is not future
    assert provider.count("on_settled") == 2


def test_settlement_cancels_timer(database, provider):
    async def scenario():
        future = await database.wait_for_transaction(HASH, timeout=0.02)
        provider.settle(HASH, RECEIPT)
        await asyncio.sleep(0.05)
        result = await future
        pending = database.confirmations.pending()
        await database.close()
        return result, pending

    result, pending = asyncio.run(scenario())

    assert result == RECEIPT
    assert pending == []


def test_invalid_hash_registers_nothing(database, provider):
    async def scenario():
        with pytest.raises(InvalidArgument):
            await database.wait_for_transaction("0xdeadbeef")
        return database.confirmations.pending()

    assert asyncio.run(scenario()) == []
    assert provider.calls == []


def test_registration_failure_is_reported(database, provider):
    provider.failures["on_settled"] = 1

    async def scenario():
        with pytest.raises(UpstreamError):
            await database.wait_for_transaction(HASH)
        pending = database.confirmations.pending()
        future = await database.wait_for_transaction(HASH)
        await database.close()
        return pending, future

    pending, future = asyncio.run(scenario())

    assert pending == []
    assert future.cancelled()


def test_close_cancels_outstanding_waits(database):
    async def scenario():
        future = await database.wait_for_transaction(HASH)
        await database.close()
        return future, database.confirmations.pending()

    future, pending = asyncio.run(scenario())

    assert future.cancelled()
    assert pending == []


def test_settlement_from_another_thread(database, provider):
    async def scenario():
        future = await database.wait_for_transaction(HASH)
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, provider.settle, HASH, RECEIPT)
        result = await asyncio.wait_for(future, timeout=1)
        await database.close()
        return result

    assert asyncio.run(scenario()) == RECEIPT
