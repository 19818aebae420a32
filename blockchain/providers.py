"""
External collaborators consumed by the engine.

Concrete chain RPC and notification implementations live outside this
package; these base classes fix the calls the engine makes.
"""
import inspect
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, List, TypeVar, Union

import structlog

from error_handling.exceptions import ChainSyncError, UpstreamError

logger = structlog.get_logger()

T = TypeVar('T')


class ChainProvider(ABC):
    """On-chain reads and settlement events."""

    @abstractmethod
    async def get_balance(self, address: str) -> int:
        """Native balance of ``address`` in wei."""

    @abstractmethod
    async def get_history(self, address: str, since_block: int) -> List[Any]:
        """
        Transactions touching ``address`` from ``since_block`` onwards.

        Entries carry ``hash``, ``from``, ``to``, ``value``, ``blockNumber``
        and optionally ``creates`` and ``data``, ordered by block.
        """

    @abstractmethod
    async def get_code(self, address: str) -> Union[str, bytes, None]:
        """Deployed bytecode at ``address``; empty for externally owned accounts."""

    @abstractmethod
    async def token_decimals(self, token: str) -> int:
        pass

    @abstractmethod
    async def token_name(self, token: str) -> str:
        pass

    @abstractmethod
    async def token_symbol(self, token: str) -> Union[str, bytes]:
        pass

    @abstractmethod
    async def token_balance(self, token: str, owner: str) -> int:
        """Raw ``balanceOf(owner)`` in the token's smallest unit."""

    @abstractmethod
    def on_settled(self, transaction_hash: str, callback: Callable[[Any], None]) -> Any:
        """
        Call ``callback(receipt)`` once ``transaction_hash`` is settled.

        May return an awaitable if registration itself does I/O.
        """


class NotificationService(ABC):
    """Push feed of transactions for addresses and hashes."""

    @abstractmethod
    def subscribe_to_address(self, address: str, callback: Callable[[Any], Any]) -> Any:
        """Deliver every transaction touching ``address`` to ``callback``."""

    @abstractmethod
    def subscribe_to_transaction(self, transaction_hash: str, callback: Callable[[Any], Any]) -> Any:
        """Deliver status updates of ``transaction_hash`` to ``callback``."""


async def call_upstream(operation: str, awaitable: Awaitable[T]) -> T:
    """
    Await a collaborator call, converting its failures to ``UpstreamError``.

    Engine errors raised by the collaborator pass through unchanged.
    """
    try:
        return await awaitable
    except ChainSyncError:
        raise
    except Exception as e:
        logger.error("upstream_call_failed",
                     operation=operation,
                     error_type=type(e).__name__,
                     error=str(e))
        raise UpstreamError(operation, e) from e


async def call_collaborator(operation: str, func: Callable[..., Any], *args: Any) -> Any:
    """
    Call a collaborator method that may be synchronous or asynchronous.

    Failures, including ones raised before the first await, surface as
    ``UpstreamError``.
    """
    async def _invoke():
        result = func(*args)
        if inspect.isawaitable(result):
            return await result
        return result

    return await call_upstream(operation, _invoke())
