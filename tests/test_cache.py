"""
Tests for the metrics cache: keys, TTL expiry, pattern invalidation and
degradation when the backend is unavailable.
"""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

import pytest
from pydantic import TypeAdapter

from socialpulse.schemas.dashboard import KPIMetrics
from socialpulse.services.cache_service import (
    MemoryCacheBackend,
    MetricsCache,
    RedisCacheBackend,
    create_cache,
    read_through,
)

KPIS = TypeAdapter(KPIMetrics)


class TestKeys:
    """Tests for cache key construction."""

    def test_key_joins_parts_under_prefix(self):
        start = datetime(2024, 1, 1, tzinfo=timezone.utc)
        key = MetricsCache.key("workspace", "ws1", start)
        assert key == "metrics:workspace:ws1:2024-01-01T00:00:00+00:00"

    def test_glob_characters_are_neutralised(self):
        assert MetricsCache.key("post", "a*b?[c]") == "metrics:post:a_b__c_"

    def test_dashboard_key_ignores_filter_order(self):
        start = datetime(2024, 1, 1, tzinfo=timezone.utc)
        end = datetime(2024, 1, 31, tzinfo=timezone.utc)
        first = MetricsCache.dashboard_key(
            "overview", "ws1", start, end, {"platforms": ["twitter", "instagram"], "accounts": ["b", "a"]}
        )
        second = MetricsCache.dashboard_key(
            "overview", "ws1", start, end, {"accounts": ["a", "b"], "platforms": ["instagram", "twitter"]}
        )
        assert first == second

    def test_dashboard_key_drops_empty_filters(self):
        start = datetime(2024, 1, 1, tzinfo=timezone.utc)
        end = datetime(2024, 1, 31, tzinfo=timezone.utc)
        bare = MetricsCache.dashboard_key("overview", "ws1", start, end)
        empty = MetricsCache.dashboard_key("overview", "ws1", start, end, {"platforms": None, "accounts": []})
        assert bare == empty
        assert ":all:" in bare

    def test_dashboard_key_includes_granularity(self):
        start = datetime(2024, 1, 1, tzinfo=timezone.utc)
        daily = MetricsCache.dashboard_key("timeseries", "ws1", start, start, granularity="daily")
        hourly = MetricsCache.dashboard_key("timeseries", "ws1", start, start, granularity="hourly")
        assert daily != hourly


class TestRoundTrip:
    """Tests for get/set/invalidate against the in-process backend."""

    async def test_set_then_get_returns_value(self, cache):
        await cache.set("metrics:workspace:ws1:a:b", {"likes": 5}, 300)
        assert await cache.get("metrics:workspace:ws1:a:b") == {"likes": 5}

    async def test_invalidate_matching_pattern_is_a_miss(self, cache):
        await cache.set("metrics:workspace:ws1:a:b", [1, 2], 300)
        removed = await cache.invalidate("metrics:workspace:ws1:*")
        assert removed == 1
        assert await cache.get("metrics:workspace:ws1:a:b") is None

    async def test_entry_expires_after_ttl(self, cache, cache_clock):
        await cache.set("metrics:post:p1", {"v": 1}, 300)
        cache_clock.advance(299)
        assert await cache.get("metrics:post:p1") == {"v": 1}
        cache_clock.advance(1)
        assert await cache.get("metrics:post:p1") is None

    async def test_invalidate_workspace_spares_other_workspaces(self, cache):
        await cache.set("metrics:workspace:ws1:a:b", 1, 300)
        await cache.set("metrics:dashboard:overview:ws1:all:a:b:-", 2, 300)
        await cache.set("metrics:aggregated:ws1:daily:a:b", 3, 3600)
        await cache.set("metrics:workspace:ws2:a:b", 4, 300)

        removed = await cache.invalidate_workspace("ws1")

        assert removed == 3
        assert await cache.get("metrics:workspace:ws2:a:b") == 4

    async def test_invalidate_account_and_post(self, cache):
        await cache.set("metrics:account:acc1:a:b", 1, 300)
        await cache.set("metrics:account:acc2:a:b", 2, 300)
        await cache.set("metrics:post:p1", 3, 300)
        await cache.set("metrics:post:p10", 4, 300)

        assert await cache.invalidate_account("acc1") == 1
        assert await cache.invalidate_post("p1") == 1
        assert await cache.get("metrics:account:acc2:a:b") == 2
        assert await cache.get("metrics:post:p10") == 4

    async def test_undecodable_entry_is_a_miss(self, cache):
        await cache.backend.set("metrics:post:p1", "{not json", 300)
        assert await cache.get("metrics:post:p1") is None


class TestMemoryBackend:
    """Tests for expiry purging and the size cap of the in-process backend."""

    async def test_expired_entries_are_purged_on_write(self, cache_clock):
        backend = MemoryCacheBackend(clock=cache_clock, max_size=5000)
        for i in range(1000):
            await backend.set(f"metrics:workspace:ws1:{i}", "1", 300)

        cache_clock.advance(10_000)
        for i in range(10):
            await backend.set(f"metrics:workspace:ws2:{i}", "1", 300)

        assert len(backend._entries) == 10

    async def test_oldest_entries_are_evicted_over_max_size(self, cache_clock):
        backend = MemoryCacheBackend(clock=cache_clock, max_size=3)
        for key in ("a", "b", "c", "d"):
            await backend.set(key, key, 300)

        assert await backend.get("a") is None
        assert [await backend.get(k) for k in ("b", "c", "d")] == ["b", "c", "d"]

    async def test_rewritten_key_counts_as_newest(self, cache_clock):
        backend = MemoryCacheBackend(clock=cache_clock, max_size=2)
        await backend.set("a", "1", 300)
        await backend.set("b", "1", 300)
        await backend.set("a", "2", 300)
        await backend.set("c", "1", 300)

        assert await backend.get("b") is None
        assert await backend.get("a") == "2"


class TestReadThrough:
    """Tests for get_or_compute and read_through."""

    async def test_second_call_is_served_from_cache(self, cache):
        calls = []

        async def compute():
            calls.append(1)
            return KPIMetrics(total_followers=10, engagement_rate=1.5)

        first = await cache.get_or_compute("metrics:dashboard:k", 300, compute, KPIS)
        second = await cache.get_or_compute("metrics:dashboard:k", 300, compute, KPIS)

        assert len(calls) == 1
        assert first == second
        assert isinstance(second, KPIMetrics)

    async def test_values_are_stored_with_camel_case_names(self, cache):
        async def compute():
            return KPIMetrics(total_followers=10)

        await cache.get_or_compute("metrics:dashboard:k", 300, compute, KPIS)

        stored = await cache.get("metrics:dashboard:k")
        assert stored["totalFollowers"] == 10

    async def test_read_through_without_cache_computes(self):
        async def compute():
            return KPIMetrics(total_posts=3)

        result = await read_through(None, "metrics:dashboard:k", compute, KPIS)
        assert result.total_posts == 3

    async def test_stale_entry_is_recomputed(self, cache):
        await cache.set("metrics:dashboard:k", {"totalFollowers": "many"}, 300)

        async def compute():
            return KPIMetrics(total_followers=12)

        result = await cache.get_or_compute("metrics:dashboard:k", 300, compute, KPIS)

        assert result.total_followers == 12
        assert (await cache.get("metrics:dashboard:k"))["totalFollowers"] == 12

    async def test_long_lived_entries_use_long_ttl(self, cache, cache_clock):
        async def compute():
            return KPIMetrics(total_posts=3)

        await read_through(cache, "metrics:aggregated:ws1:x", compute, KPIS, long_lived=True)
        cache_clock.advance(cache.short_ttl + 1)
        assert await cache.get("metrics:aggregated:ws1:x") is not None


class TestOutage:
    """A broken backend degrades to direct computation."""

    async def test_get_set_and_invalidate_do_not_raise(self, broken_cache):
        await broken_cache.set("metrics:post:p1", 1, 300)
        assert await broken_cache.get("metrics:post:p1") is None
        assert await broken_cache.invalidate_workspace("ws1") == 0

    async def test_get_or_compute_falls_back_to_compute(self, broken_cache):
        calls = []

        async def compute():
            calls.append(1)
            return KPIMetrics(total_followers=7)

        first = await broken_cache.get_or_compute("metrics:dashboard:k", 300, compute, KPIS)
        second = await broken_cache.get_or_compute("metrics:dashboard:k", 300, compute, KPIS)

        assert first.total_followers == second.total_followers == 7
        assert len(calls) == 2


class TestCreateCache:
    def test_none_disables_cache(self):
        assert create_cache("none", None, 300, 3600) is None

    def test_memory_backend(self):
        cache = create_cache("memory", None, 60, 600)
        assert isinstance(cache.backend, MemoryCacheBackend)
        assert (cache.short_ttl, cache.long_ttl) == (60, 600)

    def test_redis_without_url_falls_back_to_memory(self):
        cache = create_cache("redis", None, 300, 3600)
        assert isinstance(cache.backend, MemoryCacheBackend)

    @pytest.mark.parametrize("url", ["redis://localhost:6379/0"])
    def test_redis_backend_from_url(self, url):
        cache = create_cache("redis", url, 300, 3600)
        assert isinstance(cache.backend, RedisCacheBackend)

    async def test_redis_backend_close_uses_aclose(self):
        backend = RedisCacheBackend("redis://localhost:6379/0")
        with patch.object(backend.redis, "aclose", new_callable=AsyncMock) as aclose:
            await MetricsCache(backend).close()

        aclose.assert_awaited_once()
