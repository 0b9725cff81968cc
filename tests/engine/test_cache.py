# tests/engine/test_cache.py
"""Tests for EvaluationCache: TTL, idempotence, coalescing and backend failures."""

import asyncio

import pytest
from unittest.mock import AsyncMock

from quorum.engine.cache import (
    CacheEntry,
    EvaluationCache,
    MemoryCacheBackend,
    canonical_key,
)


class _Clock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class _BrokenBackend:
    def get(self, key):
        raise ConnectionError("backend down")

    def set(self, key, entry):
        raise ConnectionError("backend down")

    def delete(self, key):
        raise ConnectionError("backend down")

    def clear(self):
        raise ConnectionError("backend down")


class TestCanonicalKey:
    def test_key_order_does_not_matter(self):
        assert canonical_key("evaluation", {"a": 1, "b": 2}) == canonical_key(
            "evaluation", {"b": 2, "a": 1}
        )

    def test_tag_and_kind_change_the_key(self):
        base = canonical_key("evaluation", {"a": 1})
        assert canonical_key("evaluation", {"a": 1}, tag="v2") != base
        assert canonical_key("reflection", {"a": 1}) != base
        assert base.startswith("evaluation:")


class TestGetOrCompute:
    @pytest.mark.asyncio
    async def test_second_call_is_a_hit(self):
        cache = EvaluationCache()
        compute = AsyncMock(return_value={"score": 71})

        first = await cache.get_or_compute("evaluation", {"d": "x"}, compute)
        second = await cache.get_or_compute("evaluation", {"d": "x"}, compute)

        assert first is second
        assert compute.call_count == 1
        assert cache.stats()["hits"] == 1

    @pytest.mark.asyncio
    async def test_tag_separates_entries(self):
        cache = EvaluationCache()
        compute = AsyncMock(side_effect=[1, 2])
        assert await cache.get_or_compute("evaluation", {"d": "x"}, compute) == 1
        assert await cache.get_or_compute("evaluation", {"d": "x"}, compute, tag="b") == 2

    @pytest.mark.asyncio
    async def test_expired_entry_recomputes(self):
        clock = _Clock()
        cache = EvaluationCache(ttl=60, clock=clock)
        compute = AsyncMock(side_effect=["old", "new"])

        assert await cache.get_or_compute("evaluation", {}, compute) == "old"
        clock.now += 61
        assert await cache.get_or_compute("evaluation", {}, compute) == "new"

    @pytest.mark.asyncio
    async def test_concurrent_requests_coalesce(self):
        cache = EvaluationCache()
        release = asyncio.Event()
        calls = 0

        async def compute():
            nonlocal calls
            calls += 1
            await release.wait()
            return "result"

        tasks = [
            asyncio.ensure_future(cache.get_or_compute("evaluation", {"d": 1}, compute))
            for _ in range(3)
        ]
        await asyncio.sleep(0)
        release.set()
        results = await asyncio.gather(*tasks)

        assert results == ["result"] * 3
        assert calls == 1
        assert cache.stats()["coalesced"] == 2

    @pytest.mark.asyncio
    async def test_cancelled_originator_does_not_cancel_waiters(self):
        cache = EvaluationCache()
        release = asyncio.Event()
        calls = 0

        async def compute():
            nonlocal calls
            calls += 1
            await release.wait()
            return "result"

        first = asyncio.ensure_future(cache.get_or_compute("evaluation", {"d": 1}, compute))
        await asyncio.sleep(0)
        second = asyncio.ensure_future(cache.get_or_compute("evaluation", {"d": 1}, compute))
        await asyncio.sleep(0)

        first.cancel()
        with pytest.raises(asyncio.CancelledError):
            await first
        release.set()

        assert await asyncio.wait_for(second, timeout=1.0) == "result"
        assert calls == 1
        assert cache.stats()["coalesced"] == 1
        # 结果仍写入缓存 / the result is still stored
        again = await cache.get_or_compute("evaluation", {"d": 1}, compute)
        assert again == "result"
        assert calls == 1

    @pytest.mark.asyncio
    async def test_failures_are_not_cached(self):
        cache = EvaluationCache()
        compute = AsyncMock(side_effect=[RuntimeError("boom"), "ok"])

        with pytest.raises(RuntimeError):
            await cache.get_or_compute("evaluation", {}, compute)
        assert await cache.get_or_compute("evaluation", {}, compute) == "ok"

    @pytest.mark.asyncio
    async def test_failure_reaches_coalesced_waiters(self):
        cache = EvaluationCache()
        release = asyncio.Event()

        async def compute():
            await release.wait()
            raise ValueError("bad output")

        tasks = [
            asyncio.ensure_future(cache.get_or_compute("evaluation", {}, compute))
            for _ in range(2)
        ]
        await asyncio.sleep(0)
        release.set()
        results = await asyncio.gather(*tasks, return_exceptions=True)
        assert all(isinstance(r, ValueError) for r in results)
        assert cache.stats()["in_flight"] == 0

    @pytest.mark.asyncio
    async def test_backend_errors_degrade_to_compute(self):
        cache = EvaluationCache(backend=_BrokenBackend())
        compute = AsyncMock(return_value="fresh")

        assert await cache.get_or_compute("evaluation", {}, compute) == "fresh"
        assert await cache.get_or_compute("evaluation", {}, compute) == "fresh"
        assert compute.call_count == 2
        assert cache.stats()["backend_errors"] == 4

    @pytest.mark.asyncio
    async def test_invalidate(self):
        cache = EvaluationCache()
        compute = AsyncMock(side_effect=[1, 2])
        await cache.get_or_compute("evaluation", {"d": 1}, compute)
        cache.invalidate("evaluation", {"d": 1})
        assert await cache.get_or_compute("evaluation", {"d": 1}, compute) == 2


class TestMemoryCacheBackend:
    def test_evicts_oldest_when_full(self):
        backend = MemoryCacheBackend(max_entries=2)
        backend.set("a", CacheEntry("A", created_at=1, expires_at=100))
        backend.set("b", CacheEntry("B", created_at=2, expires_at=100))
        backend.set("c", CacheEntry("C", created_at=3, expires_at=100))

        assert backend.get("a") is None
        assert len(backend) == 2
