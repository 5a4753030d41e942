"""In-process LRU record cache with TTL eviction.

Implements the same record-cache contract as ``RedisCache`` for
single-process deployments and tests.
"""

from __future__ import annotations

import copy
import time
from collections import OrderedDict
from collections.abc import Sequence
from typing import Any

import structlog

logger = structlog.get_logger()


class _Entry:
    """Single cached record with its expiry deadline."""

    __slots__ = ("value", "expires_at")

    def __init__(self, value: dict[str, Any], ttl: int) -> None:
        self.value = value
        self.expires_at = time.monotonic() + ttl

    @property
    def expired(self) -> bool:
        return time.monotonic() >= self.expires_at


class InMemoryCache:
    """LRU cache of records keyed by id.

    Parameters
    ----------
    max_size:
        Maximum number of entries; the least-recently-used entry is evicted
        when full.
    default_ttl:
        Default time-to-live in seconds.
    """

    def __init__(self, max_size: int = 10_000, default_ttl: int = 300) -> None:
        self._max_size = max_size
        self._default_ttl = default_ttl
        # most-recently-used at end
        self._entries: OrderedDict[str, _Entry] = OrderedDict()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    async def get_many(self, ids: Sequence[str]) -> dict[str, dict[str, Any]]:
        found: dict[str, dict[str, Any]] = {}
        for record_id in ids:
            entry = self._entries.get(record_id)
            if entry is None or entry.expired:
                if entry is not None:
                    del self._entries[record_id]
                self._misses += 1
                continue
            self._entries.move_to_end(record_id)
            found[record_id] = copy.deepcopy(entry.value)
            self._hits += 1
        return found

    async def set_many(self, records: Sequence[dict[str, Any]], ttl: int | None = None) -> None:
        effective_ttl = ttl if ttl is not None else self._default_ttl
        for record in records:
            record_id = record["id"]
            if record_id in self._entries:
                self._entries.move_to_end(record_id)
            else:
                while len(self._entries) >= self._max_size:
                    self._entries.popitem(last=False)
                    self._evictions += 1
            self._entries[record_id] = _Entry(copy.deepcopy(record), effective_ttl)

    async def invalidate(self, record_id: str) -> None:
        self._entries.pop(record_id, None)

    async def clear(self) -> int:
        count = len(self._entries)
        self._entries.clear()
        logger.info("memory_cache_cleared", deleted=count)
        return count

    async def get_stats(self) -> dict[str, Any]:
        total = self._hits + self._misses
        ratio = (self._hits / total * 100) if total > 0 else 0.0
        return {
            "hits": self._hits,
            "misses": self._misses,
            "total_requests": total,
            "hit_ratio_pct": round(ratio, 2),
            "keys_count": len(self._entries),
            "evictions": self._evictions,
        }

    def __contains__(self, record_id: object) -> bool:
        entry = self._entries.get(record_id)  # type: ignore[call-overload]
        return entry is not None and not entry.expired

    def __len__(self) -> int:
        return len(self._entries)
