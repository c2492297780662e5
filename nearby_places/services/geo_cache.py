"""
Geographic cache with stale-while-revalidate semantics.

Design:
- Fast tier: process-local dict of ``CacheEntry`` capped at ``max_size``;
  when full the oldest ``evict_fraction`` of entries (by creation time) go.
- Backing tier: optional ``redis.asyncio`` client. Every write is mirrored
  as JSON under ``prefix + key`` and cold lookups fall back to it. Any
  backing error is logged at debug level and treated as a miss.
- Keys quantize coordinates to ``geo_precision`` decimals (~110m buckets) so
  nearby requests share results.
"""

import asyncio
import inspect
import json
import logging
import math
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional

from redis import asyncio as aioredis

from nearby_places.config import CacheConfig, RedisConfig
from nearby_places.models import CacheEntry, CacheResult
from nearby_places.utils.async_utils import RequestCancelledError

GEO_PRECISION = 3


def make_cache_key(lat: float, lng: float, radius: float, category: Optional[str] = None,
                   precision: int = GEO_PRECISION) -> str:
    """Key for a discovery request: coordinates bucketed, radius and category verbatim."""
    return f"places_{lat:.{precision}f}_{lng:.{precision}f}_{radius}_{category or 'all'}"


def make_key(prefix: str, *args: Any, precision: int = GEO_PRECISION) -> str:
    """Key for any parameter list. Numbers are bucketed like coordinates."""
    parts = []
    for arg in args:
        if isinstance(arg, bool):
            parts.append(str(arg).lower())
        elif isinstance(arg, (int, float)):
            parts.append(f"{arg:.{precision}f}")
        elif isinstance(arg, (dict, list, tuple)):
            parts.append(json.dumps(arg, sort_keys=True))
        elif arg is None or arg == "":
            parts.append("null")
        else:
            parts.append(str(arg))
    return "_".join([prefix] + parts)


def create_redis_client(config: RedisConfig) -> Optional[aioredis.Redis]:
    """Build the backing-tier client, or None when no url is configured.

    ``from_url`` does not connect; connection problems surface on first use
    and are absorbed by the cache like any other backing failure.
    """
    if not config.url:
        return None
    return aioredis.from_url(
        config.url,
        socket_timeout=config.socket_timeout,
        socket_connect_timeout=config.socket_connect_timeout,
    )


class GeoCache:
    """Two-tier TTL cache with background revalidation."""

    def __init__(self, config: Optional[CacheConfig] = None, redis_client=None,
                 clock: Callable[[], float] = time.time):
        self.config = config or CacheConfig()
        self.logger = logging.getLogger(self.__class__.__name__)
        self._redis = redis_client
        self._clock = clock
        self._memory: Dict[str, CacheEntry] = {}
        self._refreshing: Dict[str, asyncio.Task] = {}
        self._housekeeping: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def get(self, key: str) -> Any:
        """Return cached data if fresh, else None."""
        entry = await self._read(key)
        if entry is not None and entry.is_fresh(self._clock()):
            return entry.data
        return None

    async def set(self, key: str, data: Any, ttl: Optional[float] = None) -> None:
        """Store ``data`` for ``ttl`` seconds (default ttl when omitted)."""
        entry = CacheEntry.create(
            data,
            ttl if ttl is not None else self.config.ttl,
            self.config.stale_ttl,
            now=self._clock(),
        )
        self._remember(key, entry)
        await self._write_backing(key, entry)

    async def peek(self, key: str) -> Optional[CacheResult]:
        """Report usable (fresh or stale) data without refreshing anything."""
        entry = await self._read(key)
        if entry is None:
            return None
        now = self._clock()
        if entry.is_fresh(now):
            return CacheResult(entry.data, True, False)
        if entry.is_stale(now):
            return CacheResult(entry.data, False, True)
        return None

    async def get_with_revalidate(
        self,
        key: str,
        refresh: Callable[[], Awaitable[Any]],
        ttl: Optional[float] = None,
        on_refresh: Optional[Callable[[Any], Any]] = None,
    ) -> CacheResult:
        """Stale-while-revalidate lookup.

        Fresh hit: returned as is. Stale hit: returned immediately while one
        background refresh replaces the entry and then calls ``on_refresh``.
        Miss or past soft-expiry: ``refresh`` is awaited; if it fails and an
        old entry is still around, that entry is served instead of raising.

        Args:
            key: Cache key
            refresh: Zero-argument coroutine function producing fresh data
            ttl: Freshness lifetime in seconds
            on_refresh: Callback (sync or async) receiving background results

        Returns:
            CacheResult with data and freshness flags

        Raises:
            RequestCancelledError: If the blocking refresh was cancelled
            Exception: Whatever ``refresh`` raised when nothing was cached
        """
        entry = await self._read(key)
        now = self._clock()

        if entry is not None and entry.is_fresh(now):
            return CacheResult(entry.data, True, False)

        if entry is not None and entry.is_stale(now):
            self._schedule_refresh(key, refresh, ttl, on_refresh)
            return CacheResult(entry.data, False, True)

        try:
            data = await refresh()
        except RequestCancelledError:
            raise
        except Exception as e:
            if entry is not None:
                self.logger.warning(f"Refresh for {key} failed, serving expired entry: {e}")
                return CacheResult(entry.data, False, True)
            raise

        await self.set(key, data, ttl)
        return CacheResult(data, True, False)

    @property
    def pending_refreshes(self) -> List[asyncio.Task]:
        return list(self._refreshing.values())

    async def clear(self) -> None:
        """Drop every entry from both tiers."""
        self._memory.clear()
        await self._delete_backing_prefix(self.config.prefix)

    async def invalidate_pattern(self, pattern: str) -> None:
        """Drop every entry whose key starts with ``pattern``."""
        for key in [k for k in self._memory if k.startswith(pattern)]:
            del self._memory[key]
        await self._delete_backing_prefix(self.config.prefix + pattern)

    def stats(self) -> Dict[str, int]:
        now = self._clock()
        fresh = stale = expired = 0
        for entry in self._memory.values():
            if entry.is_fresh(now):
                fresh += 1
            elif entry.is_stale(now):
                stale += 1
            else:
                expired += 1
        return {
            "memory_size": len(self._memory),
            "fresh_count": fresh,
            "stale_count": stale,
            "expired_count": expired,
            "max_size": self.config.max_size,
        }

    async def purge_expired(self) -> int:
        """Remove entries past soft-expiry from both tiers.

        Returns:
            Number of entries removed
        """
        now = self._clock()
        removed = 0
        for key in [k for k, e in self._memory.items() if e.is_expired(now)]:
            del self._memory[key]
            removed += 1

        if self._redis is None:
            return removed

        try:
            async for raw_key in self._redis.scan_iter(match=f"{self.config.prefix}*"):
                raw = await self._redis.get(raw_key)
                if raw is None:
                    continue
                try:
                    entry = CacheEntry.from_dict(json.loads(_decode(raw)))
                except (ValueError, KeyError, TypeError):
                    # corrupted
                    await self._redis.delete(raw_key)
                    removed += 1
                    continue
                if entry.is_expired(now):
                    await self._redis.delete(raw_key)
                    removed += 1
        except Exception as e:
            self.logger.debug(f"Backing store cleanup failed: {e}")
        return removed

    def start_housekeeping(self) -> asyncio.Task:
        """Run ``purge_expired`` every ``cleanup_interval`` seconds until stopped."""
        if self._housekeeping is None or self._housekeeping.done():
            self._housekeeping = asyncio.ensure_future(self._housekeeping_loop())
        return self._housekeeping

    @property
    def housekeeping_running(self) -> bool:
        return self._housekeeping is not None and not self._housekeeping.done()

    async def stop_housekeeping(self) -> None:
        task, self._housekeeping = self._housekeeping, None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

    async def close(self) -> None:
        await self.stop_housekeeping()
        for task in self.pending_refreshes:
            task.cancel()
        if self._refreshing:
            await asyncio.gather(*self._refreshing.values(), return_exceptions=True)
        if self._redis is not None:
            try:
                await self._redis.aclose()
            except AttributeError:
                await self._redis.close()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _housekeeping_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.cleanup_interval)
            removed = await self.purge_expired()
            if removed:
                self.logger.debug(f"Purged {removed} expired cache entries")

    async def _read(self, key: str) -> Optional[CacheEntry]:
        entry = self._memory.get(key)
        if entry is not None:
            return entry
        entry = await self._read_backing(key)
        if entry is not None and not entry.is_expired(self._clock()):
            self._remember(key, entry)
        return entry

    def _remember(self, key: str, entry: CacheEntry) -> None:
        if key not in self._memory and len(self._memory) >= self.config.max_size:
            self._evict_oldest()
        self._memory[key] = entry

    def _evict_oldest(self) -> None:
        ordered = sorted(self._memory.items(), key=lambda item: item[1].timestamp)
        to_remove = math.ceil(len(ordered) * self.config.evict_fraction)
        for key, _ in ordered[:to_remove]:
            del self._memory[key]

    def _schedule_refresh(self, key, refresh, ttl, on_refresh) -> None:
        if key in self._refreshing:
            return
        task = asyncio.ensure_future(self._background_refresh(key, refresh, ttl, on_refresh))
        self._refreshing[key] = task
        task.add_done_callback(lambda _t, k=key: self._refreshing.pop(k, None))

    async def _background_refresh(self, key, refresh, ttl, on_refresh) -> None:
        try:
            data = await refresh()
        except Exception as e:
            self.logger.warning(f"Background refresh failed for {key}: {e}")
            return
        await self.set(key, data, ttl)
        if on_refresh is not None:
            result = on_refresh(data)
            if inspect.isawaitable(result):
                await result

    async def _read_backing(self, key: str) -> Optional[CacheEntry]:
        if self._redis is None:
            return None
        try:
            raw = await self._redis.get(self.config.prefix + key)
            if raw is None:
                return None
            return CacheEntry.from_dict(json.loads(_decode(raw)))
        except Exception as e:
            self.logger.debug(f"Backing store read failed for {key}: {e}")
            return None

    async def _write_backing(self, key: str, entry: CacheEntry) -> None:
        if self._redis is None:
            return
        try:
            payload = json.dumps(entry.to_dict())
            remaining = max(1, math.ceil(entry.stale_until - self._clock()))
            await self._redis.set(self.config.prefix + key, payload, ex=remaining)
        except Exception as e:
            self.logger.debug(f"Backing store write failed for {key}: {e}")

    async def _delete_backing_prefix(self, prefix: str) -> None:
        if self._redis is None:
            return
        try:
            async for raw_key in self._redis.scan_iter(match=f"{prefix}*"):
                await self._redis.delete(raw_key)
        except Exception as e:
            self.logger.debug(f"Backing store delete failed for {prefix}*: {e}")


def _decode(raw) -> str:
    return raw.decode() if isinstance(raw, (bytes, bytearray)) else raw
