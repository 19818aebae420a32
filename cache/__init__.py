"""
chainsync document cache

This package provides the revisioned document cache the sync engine keeps
accounts, transactions, balances and token metadata in:

- a tagged JSON codec for Decimals, timestamps and sets
- pluggable stores (in-memory and Redis) with optimistic revisions
- publish/subscribe fan-out of every successful write
"""

from .codec import decode, encode
from .core import Document, DocumentCache, NATURAL_KEY_FIELD, normalize_key
from .monitoring import CacheMonitor
from .pubsub import NEW_RECORD_TOPIC, PubSub
from .store import (
    BulkResult,
    DocumentStore,
    MemoryDocumentStore,
    StoredDocument,
    create_store,
)

__all__ = [
    'decode',
    'encode',
    'Document',
    'DocumentCache',
    'NATURAL_KEY_FIELD',
    'normalize_key',
    'CacheMonitor',
    'NEW_RECORD_TOPIC',
    'PubSub',
    'BulkResult',
    'DocumentStore',
    'MemoryDocumentStore',
    'StoredDocument',
    'create_store',
]
