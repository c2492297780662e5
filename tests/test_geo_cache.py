import asyncio
import json

import pytest

from nearby_places.config import CacheConfig
from nearby_places.services.geo_cache import GeoCache, make_cache_key, make_key
from nearby_places.utils.async_utils import RequestCancelledError


def _cache(clock, redis_client=None, **overrides):
    config = CacheConfig(**{"ttl": 10.0, "stale_ttl": 60.0, **overrides})
    return GeoCache(config, redis_client, clock=clock)


def test_cache_key_buckets_coordinates():
    assert make_cache_key(51.50012, -0.12049, 5000) == "places_51.500_-0.120_5000_all"
    assert make_cache_key(51.5, -0.12, 5000, "food") == "places_51.500_-0.120_5000_food"
    assert make_cache_key(51.50012, -0.12049, 5000) == make_cache_key(51.5004, -0.1201, 5000)


def test_make_key_formats_each_kind_of_argument():
    assert make_key("otm", 51.5, -0.12, 5000, None) == "otm_51.500_-0.120_5000.000_null"
    assert make_key("x", True, "museum") == "x_true_museum"


@pytest.mark.asyncio
async def test_fresh_hit_skips_refresh(clock):
    cache = _cache(clock)
    await cache.set("k", [1])
    calls = []

    async def refresh():
        calls.append(1)
        return [2]

    result = await cache.get_with_revalidate("k", refresh)
    assert result.data == [1]
    assert result.is_fresh and not result.is_stale
    assert calls == []


@pytest.mark.asyncio
async def test_stale_hit_serves_old_data_and_refreshes_once(clock):
    cache = _cache(clock)
    await cache.set("k", [1])
    clock.advance(20)

    calls = []
    refreshed = []

    async def refresh():
        calls.append(1)
        return [2]

    first = await cache.get_with_revalidate("k", refresh, on_refresh=refreshed.append)
    second = await cache.get_with_revalidate("k", refresh, on_refresh=refreshed.append)
    assert first.data == [1] and first.is_stale
    assert second.data == [1] and second.is_stale

    await asyncio.gather(*cache.pending_refreshes)

    assert len(calls) == 1
    assert refreshed == [[2]]
    assert await cache.get("k") == [2]


@pytest.mark.asyncio
async def test_async_refresh_callback_is_awaited(clock):
    cache = _cache(clock)
    await cache.set("k", "old")
    clock.advance(20)
    seen = []

    async def refresh():
        return "new"

    async def on_refresh(data):
        seen.append(data)

    await cache.get_with_revalidate("k", refresh, on_refresh=on_refresh)
    await asyncio.gather(*cache.pending_refreshes)
    assert seen == ["new"]


@pytest.mark.asyncio
async def test_failed_background_refresh_keeps_stale_entry(clock):
    cache = _cache(clock)
    await cache.set("k", "old")
    clock.advance(20)

    async def refresh():
        raise RuntimeError("upstream down")

    result = await cache.get_with_revalidate("k", refresh)
    await asyncio.gather(*cache.pending_refreshes)
    assert result.data == "old"
    assert (await cache.peek("k")).data == "old"


@pytest.mark.asyncio
async def test_miss_awaits_refresh_and_stores(clock):
    cache = _cache(clock)

    async def refresh():
        return {"places": []}

    result = await cache.get_with_revalidate("k", refresh)
    assert result.is_fresh
    assert await cache.get("k") == {"places": []}


@pytest.mark.asyncio
async def test_expired_entry_is_served_when_refresh_fails(clock):
    cache = _cache(clock)
    await cache.set("k", "ancient")
    clock.advance(100)
    assert await cache.get("k") is None

    async def refresh():
        raise RuntimeError("still down")

    result = await cache.get_with_revalidate("k", refresh)
    assert result.data == "ancient"
    assert result.is_stale


@pytest.mark.asyncio
async def test_miss_with_failing_refresh_raises(clock):
    cache = _cache(clock)

    async def refresh():
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        await cache.get_with_revalidate("k", refresh)


@pytest.mark.asyncio
async def test_cancelled_refresh_is_never_masked_by_old_entry(clock):
    cache = _cache(clock)
    await cache.set("k", "ancient")
    clock.advance(100)

    async def refresh():
        raise RequestCancelledError("superseded")

    with pytest.raises(RequestCancelledError):
        await cache.get_with_revalidate("k", refresh)


@pytest.mark.asyncio
async def test_full_cache_evicts_oldest_fifth(clock):
    cache = _cache(clock, max_size=5, evict_fraction=0.2)
    for i in range(5):
        await cache.set(f"k{i}", i)
        clock.advance(1)

    await cache.set("k5", 5)

    assert cache.stats()["memory_size"] == 5
    assert await cache.get("k0") is None
    assert await cache.get("k1") == 1
    assert await cache.get("k5") == 5


@pytest.mark.asyncio
async def test_peek_reports_freshness_without_refreshing(clock):
    cache = _cache(clock)
    assert await cache.peek("missing") is None
    await cache.set("k", "v")
    assert (await cache.peek("k")).is_fresh
    clock.advance(20)
    assert (await cache.peek("k")).is_stale
    clock.advance(100)
    assert await cache.peek("k") is None


@pytest.mark.asyncio
async def test_backing_store_survives_new_process(clock, fake_redis):
    writer = _cache(clock, fake_redis)
    await writer.set("k", ["a", "b"])

    stored = json.loads(fake_redis.store["nearby_cache:k"])
    assert stored["data"] == ["a", "b"]
    assert fake_redis.expiry["nearby_cache:k"] == 60

    reader = _cache(clock, fake_redis)
    assert await reader.get("k") == ["a", "b"]


@pytest.mark.asyncio
async def test_backing_store_failure_is_a_miss(clock, broken_redis):
    cache = _cache(clock, broken_redis)
    await cache.set("k", "v")
    assert await cache.get("k") == "v"
    assert await cache.get("other") is None
    await cache.clear()
    assert cache.stats()["memory_size"] == 0


@pytest.mark.asyncio
async def test_invalidate_pattern_and_clear(clock, fake_redis):
    cache = _cache(clock, fake_redis)
    await cache.set("places_a", 1)
    await cache.set("places_b", 2)
    await cache.set("otm_c", 3)

    await cache.invalidate_pattern("places_")
    assert cache.stats()["memory_size"] == 1
    assert list(fake_redis.store) == ["nearby_cache:otm_c"]

    await cache.clear()
    assert fake_redis.store == {}


@pytest.mark.asyncio
async def test_purge_expired_drops_both_tiers(clock, fake_redis):
    cache = _cache(clock, fake_redis)
    await cache.set("old", 1)
    clock.advance(100)
    await cache.set("new", 2)
    fake_redis.store["nearby_cache:corrupt"] = "{not json"

    removed = await cache.purge_expired()

    assert removed == 3
    assert await cache.get("new") == 2
    assert list(fake_redis.store) == ["nearby_cache:new"]


@pytest.mark.asyncio
async def test_stats_counts_entry_states(clock):
    cache = _cache(clock)
    await cache.set("a", 1)
    clock.advance(20)
    await cache.set("b", 2)
    clock.advance(45)
    await cache.set("c", 3)

    stats = cache.stats()
    assert stats["fresh_count"] == 1
    assert stats["stale_count"] == 1
    assert stats["expired_count"] == 1


@pytest.mark.asyncio
async def test_close_releases_redis(clock, fake_redis):
    cache = _cache(clock, fake_redis)
    cache.start_housekeeping()
    await cache.close()
    assert fake_redis.closed


@pytest.mark.asyncio
async def test_housekeeping_task_starts_once_and_stops(clock):
    cache = _cache(clock, cleanup_interval=3600.0)

    task = cache.start_housekeeping()
    assert cache.start_housekeeping() is task

    await cache.stop_housekeeping()
    assert task.done()
    await cache.stop_housekeeping()
