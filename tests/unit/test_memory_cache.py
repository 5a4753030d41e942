"""Tests for the in-process LRU record cache."""

from __future__ import annotations

import pytest

from batchops.batch.ports import RecordCache
from batchops.cache.memory_cache import InMemoryCache


def _rec(record_id: str, **fields: object) -> dict:
    return {"id": record_id, **fields}


class TestInMemoryCache:
    @pytest.mark.asyncio
    async def test_set_then_get(self) -> None:
        cache = InMemoryCache()
        await cache.set_many([_rec("a", name="A"), _rec("b", name="B")])
        found = await cache.get_many(["a", "b", "c"])
        assert found == {"a": _rec("a", name="A"), "b": _rec("b", name="B")}

    @pytest.mark.asyncio
    async def test_values_are_copies(self) -> None:
        cache = InMemoryCache()
        record = _rec("a", name="A")
        await cache.set_many([record])
        record["name"] = "mutated"
        found = await cache.get_many(["a"])
        found["a"]["name"] = "also mutated"
        assert (await cache.get_many(["a"]))["a"]["name"] == "A"

    @pytest.mark.asyncio
    async def test_expired_entries_miss(self) -> None:
        cache = InMemoryCache()
        await cache.set_many([_rec("a")], ttl=0)
        assert await cache.get_many(["a"]) == {}
        assert "a" not in cache

    @pytest.mark.asyncio
    async def test_lru_eviction(self) -> None:
        cache = InMemoryCache(max_size=2)
        await cache.set_many([_rec("a"), _rec("b")])
        await cache.get_many(["a"])
        await cache.set_many([_rec("c")])
        assert "a" in cache
        assert "b" not in cache
        assert (await cache.get_stats())["evictions"] == 1

    @pytest.mark.asyncio
    async def test_invalidate(self) -> None:
        cache = InMemoryCache()
        await cache.set_many([_rec("a")])
        await cache.invalidate("a")
        await cache.invalidate("never-there")
        assert "a" not in cache

    @pytest.mark.asyncio
    async def test_clear_returns_count(self) -> None:
        cache = InMemoryCache()
        await cache.set_many([_rec("a"), _rec("b")])
        assert await cache.clear() == 2
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_stats(self) -> None:
        cache = InMemoryCache()
        await cache.set_many([_rec("a")])
        await cache.get_many(["a", "b", "c", "a"])
        stats = await cache.get_stats()
        assert stats["hits"] == 2
        assert stats["misses"] == 2
        assert stats["total_requests"] == 4
        assert stats["hit_ratio_pct"] == 50.0
        assert stats["keys_count"] == 1

    def test_satisfies_record_cache_protocol(self) -> None:
        assert isinstance(InMemoryCache(), RecordCache)
