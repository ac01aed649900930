"""
Read-through cache for dashboard and raw metric queries.

Keys look like `metrics:<kind>:<scope id>:...`, so a glob such as
`metrics:*:<workspaceId>:*` drops everything cached for one workspace.
The cache is never authoritative: any backend error is logged and treated
as a miss, and callers fall through to direct computation.
"""
import asyncio
import fnmatch
import json
import time
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, Tuple

from pydantic import TypeAdapter, ValidationError
from redis.asyncio import Redis
from redis.exceptions import RedisError

from socialpulse.utils.logger import logger

CACHE_ERRORS = (RedisError, OSError, asyncio.TimeoutError)

_GLOB_CHARS = str.maketrans({"*": "_", "?": "_", "[": "_", "]": "_"})


def _part(value: Any) -> str:
    if isinstance(value, datetime):
        value = value.isoformat()
    return str(value).translate(_GLOB_CHARS)


class CacheBackend(ABC):
    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    async def set(self, key: str, value: str, ttl: int) -> None:
        ...

    @abstractmethod
    async def delete_pattern(self, pattern: str) -> int:
        ...

    async def close(self) -> None:
        return None


class MemoryCacheBackend(CacheBackend):
    """
    Process-local backend. Expired entries are purged on every write and the
    oldest entries are evicted once `max_size` is exceeded.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic, max_size: int = 1000):
        self._entries: Dict[str, Tuple[str, float]] = {}
        self._clock = clock
        self.max_size = max(1, max_size)

    async def get(self, key: str) -> Optional[str]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            self._entries.pop(key, None)
            return None
        return value

    async def set(self, key: str, value: str, ttl: int) -> None:
        now = self._clock()
        self._purge_expired(now)
        # Re-insert so a rewritten key counts as newest
        self._entries.pop(key, None)
        self._entries[key] = (value, now + ttl)

        # Evict oldest if over size
        while len(self._entries) > self.max_size:
            self._entries.pop(next(iter(self._entries)))

    def _purge_expired(self, now: float) -> None:
        expired = [k for k, (_, expires_at) in self._entries.items() if now >= expires_at]
        for k in expired:
            del self._entries[k]

    async def delete_pattern(self, pattern: str) -> int:
        keys = [k for k in list(self._entries) if fnmatch.fnmatchcase(k, pattern)]
        for k in keys:
            self._entries.pop(k, None)
        return len(keys)


class RedisCacheBackend(CacheBackend):
    def __init__(self, url: str, socket_timeout: float = 2.0):
        self.redis = Redis.from_url(url, socket_timeout=socket_timeout, decode_responses=True)

    async def get(self, key: str) -> Optional[str]:
        return await self.redis.get(key)

    async def set(self, key: str, value: str, ttl: int) -> None:
        await self.redis.setex(key, ttl, value)

    async def delete_pattern(self, pattern: str) -> int:
        # SCAN rather than KEYS so a large keyspace doesn't block Redis
        keys = [key async for key in self.redis.scan_iter(match=pattern, count=500)]
        if not keys:
            return 0
        return await self.redis.delete(*keys)

    async def close(self) -> None:
        await self.redis.aclose()


class MetricsCache:
    PREFIX = "metrics"

    def __init__(self, backend: CacheBackend, short_ttl: int = 300, long_ttl: int = 3600):
        self.backend = backend
        self.short_ttl = short_ttl  # queries over raw samples
        self.long_ttl = long_ttl  # queries over aggregated buckets

    # ---- keys -----------------------------------------------------------

    @classmethod
    def key(cls, kind: str, *parts: Any) -> str:
        return ":".join([cls.PREFIX, _part(kind)] + [_part(p) for p in parts])

    @classmethod
    def dashboard_key(
        cls,
        query: str,
        workspace_id: str,
        start: datetime,
        end: datetime,
        filters: Optional[Dict[str, Optional[Iterable[str]]]] = None,
        granularity: Optional[str] = None,
    ) -> str:
        """Deterministic key: filter names and values are sorted, empty filters dropped."""
        encoded = []
        for name in sorted(filters or {}):
            values = (filters or {})[name]
            if values:
                encoded.append(f"{name}={','.join(sorted(_part(v) for v in values))}")
        return cls.key(
            "dashboard",
            query,
            workspace_id,
            ";".join(encoded) or "all",
            start,
            end,
            granularity or "-",
        )

    # ---- primitives -----------------------------------------------------

    async def get(self, key: str) -> Optional[Any]:
        """Decoded value, or None on miss (or when the backend is unavailable)."""
        try:
            raw = await self.backend.get(key)
        except CACHE_ERRORS as e:
            logger.warning(f"Cache unavailable on get {key}: {e}")
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning(f"Discarding undecodable cache entry {key}")
            return None

    async def set(self, key: str, value: Any, ttl: int) -> None:
        try:
            await self.backend.set(key, json.dumps(value), ttl)
        except CACHE_ERRORS as e:
            logger.warning(f"Cache unavailable on set {key}: {e}")

    async def invalidate(self, pattern: str) -> int:
        try:
            removed = await self.backend.delete_pattern(pattern)
        except CACHE_ERRORS as e:
            logger.error(f"Error invalidating cache pattern {pattern}: {e}")
            return 0
        if removed:
            logger.info(f"Invalidated {removed} cache keys for {pattern}")
        return removed

    async def invalidate_workspace(self, workspace_id: str) -> int:
        return await self.invalidate(f"{self.PREFIX}:*:{_part(workspace_id)}:*")

    async def invalidate_account(self, account_id: str) -> int:
        return await self.invalidate(f"{self.PREFIX}:account:{_part(account_id)}:*")

    async def invalidate_post(self, post_id: str) -> int:
        return await self.invalidate(self.key("post", post_id))

    async def invalidate_aggregated(self, workspace_id: str) -> int:
        return await self.invalidate(f"{self.PREFIX}:aggregated:{_part(workspace_id)}:*")

    async def clear(self) -> int:
        return await self.invalidate(f"{self.PREFIX}:*")

    # ---- read-through ---------------------------------------------------

    async def get_or_compute(
        self,
        key: str,
        ttl: int,
        compute: Callable[[], Awaitable[Any]],
        adapter: TypeAdapter,
    ) -> Any:
        cached = await self.get(key)
        if cached is not None:
            logger.debug(f"Cache hit: {key}")
            try:
                return adapter.validate_python(cached)
            except ValidationError as e:
                logger.warning(f"Discarding stale cache entry {key}: {e.error_count()} validation errors")

        value = await compute()
        await self.set(key, adapter.dump_python(value, mode="json", by_alias=True), ttl)
        return value

    async def close(self) -> None:
        try:
            await self.backend.close()
        except CACHE_ERRORS as e:
            logger.warning(f"Error closing cache backend: {e}")


def create_cache(backend_name: str, redis_url: Optional[str], short_ttl: int, long_ttl: int) -> Optional[MetricsCache]:
    if backend_name == "none":
        return None
    if backend_name == "redis":
        if not redis_url:
            logger.warning("CACHE_BACKEND=redis but REDIS_URL is not set; using in-process cache")
        else:
            return MetricsCache(RedisCacheBackend(redis_url), short_ttl, long_ttl)
    return MetricsCache(MemoryCacheBackend(), short_ttl, long_ttl)


async def read_through(
    cache: Optional[MetricsCache],
    key: str,
    compute: Callable[[], Awaitable[Any]],
    adapter: TypeAdapter,
    long_lived: bool = False,
) -> Any:
    """Serve from `cache` when one is configured, else compute directly."""
    if cache is None:
        return await compute()
    ttl = cache.long_ttl if long_lived else cache.short_ttl
    return await cache.get_or_compute(key, ttl, compute, adapter)
