import asyncio
from decimal import Decimal, localcontext
from typing import Any, Dict, List

import structlog

from error_handling.exceptions import ConflictError, PersistenceError, UpstreamError
from .constants import ETHER_DECIMALS, NULL_ADDRESS
from .context import EngineContext
from .erc20 import TokenResolver
from .models import Account, BalanceRecord, TransactionRecord
from .providers import ChainProvider, call_upstream

logger = structlog.get_logger()


def format_units(raw: Any, decimals: int) -> Decimal:
    """
    Convert an integer amount in base units to a Decimal.

    The conversion is exact: precision is widened to fit every digit.
    """
    value = Decimal(int(raw))
    with localcontext() as ctx:
        ctx.prec = max(ctx.prec, len(str(abs(int(raw)))) + 1)
        return value.scaleb(-decimals)


class AccountSynchronizer:
    def __init__(self, context: EngineContext, provider: ChainProvider, tokens: TokenResolver):
        self.context = context
        self.provider = provider
        self.tokens = tokens

    async def fetch_account(self, address: str) -> Account:
        doc = await self.context.cache.get(address)
        return Account.from_document(address, doc.payload)

    async def fetch_transactions(self, address: str) -> List[TransactionRecord]:
        """Load the cached transaction records of an account."""
        account = await self.fetch_account(address)
        docs = await asyncio.gather(
            *(self.context.cache.get(tx_hash) for tx_hash in sorted(account.transactions))
        )
        return [TransactionRecord.from_update(doc.payload) for doc in docs if doc.exists]

    async def sync_account(self, address: str) -> Account:
        """
        Merge transaction history since the account's watermark.

        Runs under the coalescer keyed by address, so overlapping calls for
        one address see each other's writes.

        Raises:
            UpstreamError: If the history fetch fails
            PersistenceError: If the account cannot be saved afterwards
        """
        address = address.lower()

        async def _sync() -> Account:
            cache = self.context.cache
            doc = await cache.get(address)
            account = Account.from_document(address, doc.payload)

            history = await call_upstream(
                "getHistory", self.provider.get_history(address, account.last_block)
            )
            records = [TransactionRecord.from_update(entry) for entry in history]

            await asyncio.gather(*(self.store_transaction(record) for record in records))
            added = account.merge(records)

            doc.payload = {**doc.payload, **account.to_document()}
            try:
                await cache.put(doc)
            except (ConflictError, UpstreamError) as e:
                logger.error("account_save_failed", address=address, error=str(e))
                raise PersistenceError(f"Failed to save account {address}") from e

            logger.info("account_synced",
                        address=address,
                        fetched=len(records),
                        added=added,
                        last_block=account.last_block)
            return account

        return await self.context.coalescer.run(address, _sync)

    async def store_transaction(self, record: TransactionRecord) -> TransactionRecord:
        """Upsert a transaction record keyed by hash."""
        await self.context.coalescer.run(
            record.hash, lambda: self.context.cache.upsert(record.to_document())
        )
        return record

    async def transaction_update(self, update: Any) -> TransactionRecord:
        """
        Handle a transaction observed by the live feed.

        The record is persisted, then balances of tracked counterparties are
        refreshed in the background.
        """
        record = TransactionRecord.from_update(update)
        await self.store_transaction(record)

        for address in sorted(record.counterparties()):
            if address in self.context.tracking:
                self.context.spawn(self.refresh_balances(address), name="refresh_balances")

        logger.debug("transaction_updated", hash=record.hash)
        return record

    async def compute_balance(self, address: str, token: str = NULL_ADDRESS) -> Decimal:
        if token == NULL_ADDRESS:
            wei = await call_upstream("getBalance", self.provider.get_balance(address))
            return format_units(wei, ETHER_DECIMALS)

        metadata = await self.tokens.resolve(token, self.provider)
        raw = await call_upstream("balanceOf", self.provider.token_balance(token, address))
        return format_units(raw, metadata.decimals)

    async def store_balance(self, address: str, token: str, balance: Decimal) -> BalanceRecord:
        record = BalanceRecord(address=address, token=token, balance=balance)
        await self.context.coalescer.run(
            record.uuid, lambda: self.context.cache.upsert(record.to_document())
        )
        return record

    async def refresh_balance(self, address: str, token: str = NULL_ADDRESS) -> Decimal:
        """Read a fresh balance from the provider and cache it."""
        balance = await self.compute_balance(address, token)
        await self.store_balance(address, token, balance)
        logger.debug("balance_refreshed", address=address, token=token, balance=str(balance))
        return balance

    async def refresh_balances(self, address: str) -> Dict[str, Decimal]:
        """
        Refresh the native balance and every token balance of ``address``.

        Candidate tokens are the address itself and every counterparty of its
        cached transactions.

        Returns:
            Mapping of token address to balance for every refresh that succeeded
        """
        address = address.lower()
        transactions = await self.fetch_transactions(address)

        candidates = {address}
        for transaction in transactions:
            candidates |= transaction.counterparties()

        tokens = await self.tokens.resolve_many(sorted(candidates), self.provider)
        targets = [NULL_ADDRESS] + [token.address for token in tokens]

        results = await asyncio.gather(
            *(self.refresh_balance(address, token) for token in targets),
            return_exceptions=True,
        )

        balances: Dict[str, Decimal] = {}
        for token, result in zip(targets, results):
            if isinstance(result, Exception):
                logger.warning("balance_refresh_failed",
                               address=address,
                               token=token,
                               error=str(result))
            elif isinstance(result, BaseException):
                raise result
            else:
                balances[token] = result

        return balances
