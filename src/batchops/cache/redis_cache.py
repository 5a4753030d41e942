"""Redis cache layer for batch record reads.

Provides async cache-aside storage with JSON serialization, key
namespacing, TTL management, and hit/miss tracking. Multi-key reads use
MGET and multi-key writes use a single pipeline.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import orjson
import structlog

logger = structlog.get_logger()


def _dumps(obj: Any) -> bytes:
    return orjson.dumps(obj)


def _loads(data: bytes | str) -> Any:
    return orjson.loads(data)


class RedisCache:
    """Async Redis cache of records keyed by id.

    Key format: ``{prefix}:{namespace}:{id}``

    Parameters
    ----------
    redis_url:
        Redis connection string (e.g. ``redis://localhost:6379/0``).
    default_ttl:
        Default time-to-live in seconds for cached entries.
    key_prefix:
        Global prefix prepended to all cache keys.
    namespace:
        Record namespace; one cache instance serves one record type.
    """

    def __init__(
        self,
        redis_url: str,
        default_ttl: int = 300,
        key_prefix: str = "batchops",
        namespace: str = "users",
    ) -> None:
        self._redis_url = redis_url
        self._default_ttl = default_ttl
        self._key_prefix = key_prefix
        self._namespace = namespace
        self._client: Any = None
        self._hits: int = 0
        self._misses: int = 0

    # ── Lifecycle ────────────────────────────────────────────────

    async def connect(self) -> None:
        """Open the async Redis connection pool."""
        import redis.asyncio as aioredis

        self._client = aioredis.from_url(
            self._redis_url,
            decode_responses=False,
        )
        logger.info("redis_cache_connected", url=self._redis_url)

    async def disconnect(self) -> None:
        """Close the async Redis connection pool."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.info("redis_cache_disconnected")

    # ── Key helpers ──────────────────────────────────────────────

    def _make_key(self, record_id: str) -> str:
        """Build a fully-qualified cache key."""
        return f"{self._key_prefix}:{self._namespace}:{record_id}"

    # ── Core operations ──────────────────────────────────────────

    async def get_many(self, ids: Sequence[str]) -> dict[str, dict[str, Any]]:
        """Fetch cached records for *ids* with one MGET.

        Missing keys and entries that fail to deserialize are omitted.
        """
        if not ids:
            return {}
        raw_values = await self._client.mget([self._make_key(i) for i in ids])

        found: dict[str, dict[str, Any]] = {}
        for record_id, raw in zip(ids, raw_values, strict=True):
            if raw is None:
                self._misses += 1
                continue
            try:
                found[record_id] = _loads(raw)
            except orjson.JSONDecodeError as exc:
                self._misses += 1
                logger.warning("cache_entry_corrupt", record_id=record_id, error=str(exc))
                continue
            self._hits += 1

        logger.debug("cache_get_many", requested=len(ids), hits=len(found))
        return found

    async def set_many(self, records: Sequence[dict[str, Any]], ttl: int | None = None) -> None:
        """Store *records* under their ``id`` with one pipelined SETEX batch."""
        if not records:
            return
        effective_ttl = ttl if ttl is not None else self._default_ttl
        pipe = self._client.pipeline()
        for record in records:
            pipe.set(self._make_key(record["id"]), _dumps(record), ex=effective_ttl)
        await pipe.execute()
        logger.debug("cache_set_many", count=len(records), ttl=effective_ttl)

    async def invalidate(self, record_id: str) -> None:
        """Remove a single record from the cache."""
        await self._client.delete(self._make_key(record_id))

    async def invalidate_pattern(self, pattern: str) -> int:
        """Delete all keys in this namespace matching a glob pattern.

        Returns the number of keys deleted.
        """
        full_pattern = f"{self._key_prefix}:{self._namespace}:{pattern}"
        deleted = 0
        async for matched_key in self._client.scan_iter(match=full_pattern):
            await self._client.delete(matched_key)
            deleted += 1
        logger.info("cache_invalidated", pattern=full_pattern, deleted=deleted)
        return deleted

    async def clear(self) -> int:
        """Delete every entry in this namespace."""
        return await self.invalidate_pattern("*")

    # ── Stats & health ───────────────────────────────────────────

    async def get_stats(self) -> dict[str, Any]:
        """Return cache statistics (hits, misses, keys in namespace)."""
        total = self._hits + self._misses
        ratio = (self._hits / total * 100) if total > 0 else 0.0

        keys_count = 0
        async for _ in self._client.scan_iter(
            match=f"{self._key_prefix}:{self._namespace}:*",
        ):
            keys_count += 1

        return {
            "hits": self._hits,
            "misses": self._misses,
            "total_requests": total,
            "hit_ratio_pct": round(ratio, 2),
            "keys_count": keys_count,
        }

    async def health_check(self) -> dict[str, str]:
        """Verify Redis connectivity."""
        try:
            await self._client.ping()
            return {"status": "healthy"}
        except Exception as exc:
            return {"status": "unhealthy", "error": str(exc)}
