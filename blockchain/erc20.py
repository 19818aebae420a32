"""
ERC20 token metadata resolution.

Token metadata is immutable once a contract is deployed, so it is fetched
once per address and cached indefinitely. Addresses without contract code
are remembered in the ``NaT`` (not-a-token) document so they are never
looked up again.
"""
import asyncio
from typing import Iterable, List, Set, Union

import structlog

from error_handling.exceptions import NonTokenError, ValidationError
from .constants import EMPTY_CODE, NAT_KEY
from .context import EngineContext
from .models import TokenMetadata
from .providers import ChainProvider, call_upstream
from .validation import validate_is_address

logger = structlog.get_logger()

NAT_ADDRESSES_FIELD = "addresses"


def trim_symbol(symbol: Union[str, bytes]) -> str:
    """Strip whitespace and NUL padding (bytes32 symbols) from a token symbol."""
    if isinstance(symbol, (bytes, bytearray)):
        symbol = symbol.decode("utf-8", errors="ignore")
    return symbol.replace("\x00", "").strip()


def is_empty_code(code) -> bool:
    if isinstance(code, str):
        code = code.strip().lower()
    elif isinstance(code, bytearray):
        code = bytes(code)
    return code in EMPTY_CODE


class NonTokenRegistry:
    """Persistent set of addresses known not to be token contracts."""

    def __init__(self, context: EngineContext):
        self.context = context

    async def addresses(self) -> Set[str]:
        doc = await self.context.cache.get(NAT_KEY)
        return set(doc.payload.get(NAT_ADDRESSES_FIELD) or ())

    async def is_non_token(self, address: str) -> bool:
        return address.lower() in await self.addresses()

    async def mark_non_token(self, address: str) -> bool:
        """
        Record ``address`` as not a token. Re-marking is a no-op.

        Returns:
            True if the address was newly added
        """
        return await self.mark_many([address]) == 1

    async def mark_many(self, addresses: Iterable[str]) -> int:
        """
        Record several addresses in one write.

        Returns:
            Number of addresses newly added
        """
        incoming = {address.lower() for address in addresses}

        async def _mark() -> int:
            doc = await self.context.cache.get(NAT_KEY)
            known = set(doc.payload.get(NAT_ADDRESSES_FIELD) or ())
            added = incoming - known
            if not added:
                return 0

            doc.payload[NAT_ADDRESSES_FIELD] = known | added
            await self.context.cache.put(doc)
            logger.info("non_token_marked", addresses=sorted(added))
            return len(added)

        return await self.context.coalescer.run(NAT_KEY, _mark)


class TokenResolver:
    """Resolves and caches token metadata through the coalescer."""

    def __init__(self, context: EngineContext, registry: NonTokenRegistry = None):
        self.context = context
        self.registry = registry or NonTokenRegistry(context)

    async def resolve(self, address: str, provider: ChainProvider) -> TokenMetadata:
        """
        Resolve token metadata for ``address``.

        Raises:
            ValidationError: If ``address`` is not an address
            NonTokenError: If the address has no contract code
            UpstreamError: If the provider fails
        """
        address = validate_is_address(address, prefix="TokenResolver.resolve:")

        if await self.registry.is_non_token(address):
            raise NonTokenError(address)

        return await self.context.coalescer.run(
            address, lambda: self._fetch(address, provider)
        )

    async def _fetch(self, address: str, provider: ChainProvider) -> TokenMetadata:
        cache = self.context.cache
        doc = await cache.get(address)

        if TokenMetadata.is_complete(doc.payload):
            return TokenMetadata.model_validate(doc.payload)

        code = await call_upstream("getCode", provider.get_code(address))
        if is_empty_code(code):
            await self.registry.mark_non_token(address)
            raise NonTokenError(address)

        decimals, name, symbol = await asyncio.gather(
            call_upstream("decimals", provider.token_decimals(address)),
            call_upstream("name", provider.token_name(address)),
            call_upstream("symbol", provider.token_symbol(address)),
        )

        fetched = {
            "address": address,
            "decimals": int(decimals),
            "name": name,
            "symbol": trim_symbol(symbol),
        }
        cached = {key: value for key, value in doc.payload.items() if value is not None}
        metadata = TokenMetadata.model_validate({**fetched, **cached})

        doc.payload = {**cached, **metadata.to_document()}
        await cache.put(doc)

        logger.info("token_resolved",
                    address=address,
                    symbol=metadata.symbol,
                    decimals=metadata.decimals)
        return metadata

    async def resolve_many(self, addresses: Iterable[str], provider: ChainProvider) -> List[TokenMetadata]:
        """
        Resolve every token among ``addresses``, skipping known non-tokens.

        Only successes are returned. Addresses without contract code are
        marked by ``resolve`` itself; other failures are marked as non-tokens
        only when ``mark_failed_tokens_as_nat`` is set.
        """
        if isinstance(addresses, (str, bytes)) or not isinstance(addresses, Iterable):
            raise ValidationError("'addresses' argument must be a collection of addresses")

        unique = list(dict.fromkeys(address.lower() for address in addresses))
        known = await self.registry.addresses()
        candidates = [address for address in unique if address not in known]

        results = await asyncio.gather(
            *(self.resolve(address, provider) for address in candidates),
            return_exceptions=True,
        )

        resolved: List[TokenMetadata] = []
        failed: List[str] = []

        for address, result in zip(candidates, results):
            if isinstance(result, TokenMetadata):
                resolved.append(result)
            elif isinstance(result, (NonTokenError, ValidationError)):
                continue
            elif isinstance(result, Exception):
                logger.warning("token_resolution_failed", address=address, error=str(result))
                failed.append(address)
            else:
                raise result

        if failed and self.context.settings.mark_failed_tokens_as_nat:
            await self.registry.mark_many(failed)

        return resolved
