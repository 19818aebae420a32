"""Shared fixtures and in-process fakes for the chain collaborators."""
from collections import defaultdict

import pytest

from blockchain.context import EngineContext
from blockchain.database import Database
from blockchain.providers import ChainProvider, NotificationService
from cache.store import MemoryDocumentStore
from config.settings import EngineSettings

WALLET = "0x" + "a1" * 20
OTHER = "0x" + "c3" * 20
TOKEN = "0x" + "b2" * 20
SECOND_TOKEN = "0x" + "d4" * 20


def tx_hash(n: int) -> str:
    return "0x" + format(n, "064x")


class FakeChainProvider(ChainProvider):
    """Chain provider answering from dictionaries and recording every call."""

    def __init__(self):
        self.balances = {}
        self.history = defaultdict(list)
        self.code = {}
        self.tokens = {}
        self.token_balances = {}
        self.broken = set()
        self.failures = {}
        self.calls = []
        self.settle_callbacks = defaultdict(list)

    def _record(self, method, *args):
        self.calls.append((method,) + args)
        if self.failures.get(method, 0) > 0:
            self.failures[method] -= 1
            raise RuntimeError(f"{method} unavailable")

    def count(self, method, *args):
        return sum(1 for call in self.calls if call[0] == method and call[1:1 + len(args)] == args)

    def add_token(self, address, name="Token", symbol="TKN", decimals=18):
        self.code[address.lower()] = "0x6080604052"
        self.tokens[address.lower()] = {"name": name, "symbol": symbol, "decimals": decimals}

    def _token(self, token):
        if token.lower() in self.broken:
            raise RuntimeError(f"call to {token} reverted")
        return self.tokens[token.lower()]

    async def get_balance(self, address):
        self._record("get_balance", address)
        return self.balances.get(address.lower(), 0)

    async def get_history(self, address, since_block):
        self._record("get_history", address, since_block)
        return [
            dict(entry) for entry in self.history[address.lower()]
            if entry["blockNumber"] >= since_block
        ]

    async def get_code(self, address):
        self._record("get_code", address)
        return self.code.get(address.lower(), "0x")

    async def token_decimals(self, token):
        self._record("token_decimals", token)
        return self._token(token)["decimals"]

    async def token_name(self, token):
        self._record("token_name", token)
        return self._token(token)["name"]

    async def token_symbol(self, token):
        self._record("token_symbol", token)
        return self._token(token)["symbol"]

    async def token_balance(self, token, owner):
        self._record("token_balance", token, owner)
        return self.token_balances.get((token.lower(), owner.lower()), 0)

    def on_settled(self, transaction_hash, callback):
        self._record("on_settled", transaction_hash)
        self.settle_callbacks[transaction_hash].append(callback)

    def settle(self, transaction_hash, receipt):
        for callback in self.settle_callbacks.pop(transaction_hash, []):
            callback(receipt)


class FakeNotificationService(NotificationService):
    """Notification feed that keeps the registered callbacks."""

    def __init__(self):
        self.address_callbacks = defaultdict(list)
        self.transaction_callbacks = defaultdict(list)
        self.failing = False

    def subscribe_to_address(self, address, callback):
        if self.failing:
            raise ConnectionError("notification service unreachable")
        self.address_callbacks[address].append(callback)

    def subscribe_to_transaction(self, transaction_hash, callback):
        if self.failing:
            raise ConnectionError("notification service unreachable")
        self.transaction_callbacks[transaction_hash].append(callback)


@pytest.fixture
def settings():
    """Settings with short timeouts and no retries."""
    return EngineSettings(wait_timeout=5.0, retry_max_attempts=1)


@pytest.fixture
def provider():
    return FakeChainProvider()


@pytest.fixture
def notifications():
    return FakeNotificationService()


@pytest.fixture
def context(settings):
    return EngineContext.create(settings, MemoryDocumentStore())


@pytest.fixture
def database(provider, notifications, context):
    """Create a database wired to the fakes."""
    return Database(provider, notifications, context=context)
