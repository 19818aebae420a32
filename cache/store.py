"""
Persistent document store contract.

A store keeps encoded documents under string keys together with an opaque
revision token. Writes must present the revision they read; a write without
a revision is a creation and fails if the key already exists.
"""
import asyncio
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple

import structlog

from config.settings import StoreBackend
from error_handling.exceptions import ChainSyncError, ConflictError

logger = structlog.get_logger()


@dataclass
class StoredDocument:
    """Raw document as held by a store."""
    value: Any
    revision: str


@dataclass
class BulkResult:
    """Outcome of one document in a bulk write."""
    id: str
    ok: bool
    revision: Optional[str] = None
    error: Optional[Exception] = None


def next_revision(current: Optional[str]) -> str:
    """Build the revision following ``current`` (``<generation>-<nonce>``)."""
    generation = 0
    if current:
        generation = int(current.split('-', 1)[0])
    return f"{generation + 1}-{uuid.uuid4().hex[:16]}"


class DocumentStore(ABC):
    """Abstract revisioned key/value store."""

    @abstractmethod
    async def get(self, key: str) -> Optional[StoredDocument]:
        """Return the stored document or None when the key is missing."""

    @abstractmethod
    async def put(self, key: str, value: Any, revision: Optional[str] = None) -> str:
        """
        Write ``value`` under ``key``.

        Returns:
            The new revision

        Raises:
            ConflictError: If ``revision`` is not the key's current revision
        """

    async def bulk_put(self, items: Iterable[Tuple[str, Any, Optional[str]]]) -> List[BulkResult]:
        """
        Write several documents, reporting each outcome independently.

        Conflicts and store failures mark only their own item as failed.
        """
        results = []
        for key, value, revision in items:
            try:
                new_revision = await self.put(key, value, revision)
                results.append(BulkResult(id=key, ok=True, revision=new_revision))
            except ChainSyncError as e:
                logger.warning("store_bulk_item_failed",
                               key=key,
                               error_type=type(e).__name__,
                               error=str(e))
                results.append(BulkResult(id=key, ok=False, error=e))
        return results

    async def close(self) -> None:
        """Release any held resources."""


class MemoryDocumentStore(DocumentStore):
    """In-process store, the default backend and the one used in tests."""

    def __init__(self):
        self._documents: Dict[str, StoredDocument] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Optional[StoredDocument]:
        return self._documents.get(key)

    async def put(self, key: str, value: Any, revision: Optional[str] = None) -> str:
        async with self._lock:
            current = self._documents.get(key)
            current_revision = current.revision if current else None

            if revision != current_revision:
                raise ConflictError(key, revision, current_revision)

            new_revision = next_revision(current_revision)
            self._documents[key] = StoredDocument(value=value, revision=new_revision)
            return new_revision

    def __len__(self) -> int:
        return len(self._documents)

    def keys(self) -> List[str]:
        return list(self._documents)


def create_store(settings) -> DocumentStore:
    """Build the store backend named by ``settings.store_backend``."""
    if settings.store_backend == StoreBackend.REDIS:
        from .redis_manager import RedisDocumentStore
        logger.info("document_store_selected", backend="redis", namespace=settings.redis_namespace)
        return RedisDocumentStore(settings.redis_url, namespace=settings.redis_namespace)

    logger.info("document_store_selected", backend="memory")
    return MemoryDocumentStore()
