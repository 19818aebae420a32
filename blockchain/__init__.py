"""
chainsync engine

Tracks Ethereum-style accounts, their transactions and balances against the
document cache, coalescing concurrent work per address.
"""

from .coalescer import Coalescer
from .confirmations import ConfirmationWaiter
from .constants import NAT_KEY, NULL_ADDRESS, balance_key
from .context import EngineContext
from .database import Database
from .erc20 import NonTokenRegistry, TokenResolver, trim_symbol
from .models import Account, BalanceRecord, TokenMetadata, TransactionRecord
from .providers import ChainProvider, NotificationService
from .sync import AccountSynchronizer, format_units

__all__ = [
    'Coalescer',
    'ConfirmationWaiter',
    'NAT_KEY',
    'NULL_ADDRESS',
    'balance_key',
    'EngineContext',
    'Database',
    'NonTokenRegistry',
    'TokenResolver',
    'trim_symbol',
    'Account',
    'BalanceRecord',
    'TokenMetadata',
    'TransactionRecord',
    'ChainProvider',
    'NotificationService',
    'AccountSynchronizer',
    'format_units',
]
