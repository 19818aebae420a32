from typing import Any, Optional
import json
import redis.asyncio as redis
from redis.exceptions import RedisError, WatchError
import structlog

from error_handling.exceptions import ConflictError, UpstreamError
from .store import DocumentStore, StoredDocument, next_revision

logger = structlog.get_logger()

REVISION_FIELD = "rev"
VALUE_FIELD = "value"


class RedisDocumentStore(DocumentStore):
    def __init__(self, redis_url: str, namespace: str = "chainsync",
                 client: Optional[redis.Redis] = None):
        """Initialize the Redis document store with connection URL and key namespace."""
        self.redis_url = redis_url
        self.namespace = namespace
        self.redis: Optional[redis.Redis] = client

    async def connect(self) -> None:
        """Establish connection to Redis."""
        try:
            self.redis = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True
            )
            await self.redis.ping()
            logger.info("redis_connection_established")
        except RedisError as e:
            logger.error("redis_connection_failed", error=str(e))
            raise UpstreamError("redis connect", e) from e

    async def close(self) -> None:
        """Close Redis connection."""
        if self.redis:
            await self.redis.aclose()
            logger.info("redis_connection_closed")

    def document_key(self, key: str) -> str:
        return f"{self.namespace}:doc:{key}"

    async def _client(self) -> redis.Redis:
        if not self.redis:
            await self.connect()
        return self.redis

    async def get(self, key: str) -> Optional[StoredDocument]:
        """Get a document and its revision."""
        client = await self._client()
        try:
            stored = await client.hgetall(self.document_key(key))
        except RedisError as e:
            logger.error("redis_get_failed", key=key, error=str(e))
            raise UpstreamError("redis get", e) from e

        if not stored:
            return None
        return StoredDocument(
            value=json.loads(stored[VALUE_FIELD]),
            revision=stored[REVISION_FIELD]
        )

    async def put(self, key: str, value: Any, revision: Optional[str] = None) -> str:
        """Write a document if ``revision`` still matches the stored one."""
        client = await self._client()
        redis_key = self.document_key(key)

        try:
            async with client.pipeline(transaction=True) as pipe:
                await pipe.watch(redis_key)
                current = await pipe.hget(redis_key, REVISION_FIELD)

                if current != revision:
                    await pipe.unwatch()
                    raise ConflictError(key, revision, current)

                new_revision = next_revision(current)
                pipe.multi()
                pipe.hset(redis_key, mapping={
                    REVISION_FIELD: new_revision,
                    VALUE_FIELD: json.dumps(value, sort_keys=True)
                })
                await pipe.execute()
                return new_revision
        except WatchError as e:
            # Another writer committed between WATCH and EXEC
            logger.warning("redis_put_conflict", key=key, revision=revision)
            raise ConflictError(key, revision) from e
        except RedisError as e:
            logger.error("redis_put_failed", key=key, error=str(e))
            raise UpstreamError("redis put", e) from e

    async def delete(self, key: str) -> bool:
        """Delete a document regardless of revision."""
        client = await self._client()
        try:
            return bool(await client.delete(self.document_key(key)))
        except RedisError as e:
            logger.error("redis_delete_failed", key=key, error=str(e))
            raise UpstreamError("redis delete", e) from e

    async def clear(self) -> int:
        """Remove every document in this store's namespace."""
        client = await self._client()
        removed = 0
        cursor = 0
        while True:
            cursor, keys = await client.scan(
                cursor=cursor,
                match=f"{self.namespace}:doc:*",
                count=100
            )
            if keys:
                removed += await client.delete(*keys)
            if cursor == 0:
                break
        return removed
