"""
Document cache for chainsync.

This module wraps a revisioned ``DocumentStore`` with the tagged codec and
publish/subscribe fan-out. Every key is lowercased before use so lookups are
address-case-insensitive, and a missing key reads as an empty document
rather than an error.
"""
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

import structlog

from error_handling.exceptions import CodecError, ConflictError, ValidationError
from . import codec
from .monitoring import CacheMonitor
from .pubsub import NEW_RECORD_TOPIC, PubSub
from .store import BulkResult, DocumentStore, MemoryDocumentStore

logger = structlog.get_logger()

NATURAL_KEY_FIELD = 'uuid'


@dataclass
class Document:
    """A cached document: lowercased id, decoded payload and store revision."""
    id: str
    payload: Dict[str, Any] = field(default_factory=dict)
    revision: Optional[str] = None

    @property
    def exists(self) -> bool:
        return self.revision is not None


def normalize_key(key: str) -> str:
    """Lowercase a document key, rejecting non-string and empty keys."""
    if not isinstance(key, str) or not key:
        raise ValidationError(f"Expected document key to be a non-empty string. Got: {key!r}")
    return key.lower()


class DocumentCache:
    """
    Typed document cache with optimistic revision writes.

    ``put`` never retries: a stale revision raises ``ConflictError`` and the
    caller is expected to re-read and try again, normally inside a coalescer
    task keyed by the document id.
    """

    def __init__(self, store: Optional[DocumentStore] = None,
                 pubsub: Optional[PubSub] = None,
                 monitor: Optional[CacheMonitor] = None):
        """
        Initialize the document cache.

        Args:
            store: Backing store, an in-memory store when omitted
            pubsub: Fan-out used to announce successful writes
            monitor: Metrics collector
        """
        self.store = store if store is not None else MemoryDocumentStore()
        self.pubsub = pubsub if pubsub is not None else PubSub()
        self.monitor = monitor if monitor is not None else CacheMonitor()

    async def get(self, key: str) -> Document:
        """
        Get a document from the cache.

        Returns:
            The stored document, or ``{uuid: key}`` with no revision if missing
        """
        key = normalize_key(key)
        start = time.perf_counter()
        stored = await self.store.get(key)
        self.monitor.record_latency(key, 'get', time.perf_counter() - start)

        if stored is None:
            self.monitor.record_miss(key)
            logger.debug("cache_miss", key=key)
            return Document(id=key, payload={NATURAL_KEY_FIELD: key})

        self.monitor.record_hit(key)
        logger.debug("cache_hit", key=key, revision=stored.revision)
        return Document(id=key, payload=codec.decode(stored.value), revision=stored.revision)

    async def put(self, doc: Document) -> bool:
        """
        Write a document, presenting its revision for optimistic concurrency.

        On success ``doc.revision`` is advanced in place and the payload is
        published under the document id.

        Raises:
            ConflictError: If the revision is stale or the key already exists
            CodecError: If the payload cannot be encoded
        """
        key = normalize_key(doc.id)
        encoded = codec.encode(doc.payload)
        created = doc.revision is None

        start = time.perf_counter()
        try:
            revision = await self.store.put(key, encoded, doc.revision)
        except ConflictError:
            self.monitor.record_conflict(key)
            logger.warning("cache_put_conflict", key=key, revision=doc.revision)
            raise
        finally:
            self.monitor.record_latency(key, 'put', time.perf_counter() - start)

        doc.id = key
        doc.revision = revision
        self.monitor.record_write(key)
        self._announce(key, encoded, created)
        return True

    async def upsert(self, payload: Dict[str, Any]) -> Document:
        """
        Write ``payload`` over whatever is stored under its ``uuid``.

        This reads the current revision and writes once; run it inside a
        coalescer task keyed by the uuid to keep the read and write together.
        """
        key = payload.get(NATURAL_KEY_FIELD)
        current = await self.get(key)
        doc = Document(id=current.id, payload=payload, revision=current.revision)
        await self.put(doc)
        return doc

    async def bulk_put(self, docs: Iterable[Document]) -> List[BulkResult]:
        """
        Write several documents, reporting each outcome independently.

        Documents that fail to encode are reported as failed results without
        reaching the store.
        """
        docs = list(docs)
        results: Dict[int, BulkResult] = {}
        pending = []

        for index, doc in enumerate(docs):
            try:
                key = normalize_key(doc.id)
                pending.append((index, key, codec.encode(doc.payload)))
            except (CodecError, ValidationError) as e:
                logger.error("cache_bulk_encode_failed", key=doc.id, error=str(e))
                results[index] = BulkResult(id=str(doc.id), ok=False, error=e)

        stored = await self.store.bulk_put(
            (key, encoded, docs[index].revision) for index, key, encoded in pending
        )

        for (index, key, encoded), result in zip(pending, stored):
            results[index] = result
            doc = docs[index]
            if not result.ok:
                if isinstance(result.error, ConflictError):
                    self.monitor.record_conflict(key)
                continue

            created = doc.revision is None
            doc.id = key
            doc.revision = result.revision
            self.monitor.record_write(key)
            self._announce(key, encoded, created)

        logger.debug("cache_bulk_put",
                     total=len(docs),
                     failed=sum(1 for r in results.values() if not r.ok))
        return [results[index] for index in range(len(docs))]

    def publish(self, key: str, payload: Any) -> int:
        return self.pubsub.publish(normalize_key(key), payload)

    def _announce(self, key: str, encoded: Any, created: bool) -> None:
        # Subscribers get their own decoded copy
        if created:
            self.pubsub.publish(NEW_RECORD_TOPIC, codec.decode(encoded))
        self.pubsub.publish(key, codec.decode(encoded))
