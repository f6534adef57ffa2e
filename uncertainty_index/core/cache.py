"""
Async TTL cache for downloaded pages and workbooks.

Several panel sources read the same origin document (the NFIB release
page, the CFO workbook, the SBU workbook). Each shared dataset holder owns
one InMemoryCache so the document is fetched once per TTL window. Tests
pass a fresh (cold) cache or one pre-seeded with a payload.

Usage:
    cache = InMemoryCache(default_ttl=900)
    workbook = await cache.get_or_load("cfo", download_workbook)
"""
import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    """A cached value with its creation time and lifetime."""
    value: Any
    created_at: float
    ttl: float
    hits: int = 0

    @property
    def expires_at(self) -> float:
        return self.created_at + self.ttl


class InMemoryCache:
    """
    In-memory cache with TTL support.

    Safe for concurrent coroutines: reads and writes take an asyncio.Lock,
    and get_or_load runs at most one loader per key at a time.
    """

    def __init__(
        self,
        default_ttl: float = 900,
        max_size: int = 64,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            default_ttl: Default time-to-live in seconds
            max_size: Maximum number of entries before the oldest is evicted
            clock: Time source in seconds (tests inject a fake)
        """
        self.default_ttl = default_ttl
        self.max_size = max_size
        self._clock = clock

        self._cache: Dict[str, CacheEntry] = {}
        self._lock = asyncio.Lock()
        self._load_locks: Dict[str, asyncio.Lock] = {}

        self._stats = {"hits": 0, "misses": 0, "sets": 0, "evictions": 0}

    def _is_expired(self, entry: CacheEntry) -> bool:
        return self._clock() >= entry.expires_at

    async def get(self, key: str) -> Optional[Any]:
        """Return the cached value, or None if absent or expired."""
        async with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                self._stats["misses"] += 1
                return None
            if self._is_expired(entry):
                del self._cache[key]
                self._stats["misses"] += 1
                return None
            entry.hits += 1
            self._stats["hits"] += 1
            return entry.value

    async def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        """Store a value; ttl defaults to the cache's default_ttl."""
        if ttl is None:
            ttl = self.default_ttl

        async with self._lock:
            if len(self._cache) >= self.max_size and key not in self._cache:
                self._evict_oldest()
            self._cache[key] = CacheEntry(value=value, created_at=self._clock(), ttl=ttl)
            self._stats["sets"] += 1

    async def get_or_load(
        self,
        key: str,
        loader: Callable[[], Awaitable[Any]],
        ttl: Optional[float] = None,
    ) -> Any:
        """
        Return the cached value for key, loading it on a miss.

        Concurrent callers for the same key wait for one load instead of
        each issuing their own download. Loader exceptions propagate and
        nothing is cached.
        """
        value = await self.get(key)
        if value is not None:
            return value

        async with self._lock:
            load_lock = self._load_locks.setdefault(key, asyncio.Lock())

        async with load_lock:
            value = await self.get(key)
            if value is not None:
                return value
            logger.debug(f"Cache miss for {key}, loading")
            value = await loader()
            await self.set(key, value, ttl)
            return value

    async def delete(self, key: str) -> bool:
        async with self._lock:
            return self._cache.pop(key, None) is not None

    async def clear(self) -> int:
        """Drop every entry; returns how many were removed."""
        async with self._lock:
            count = len(self._cache)
            self._cache.clear()
            return count

    async def get_stats(self) -> Dict[str, Any]:
        async with self._lock:
            return {**self._stats, "size": len(self._cache), "max_size": self.max_size}

    def _evict_oldest(self) -> None:
        oldest_key = min(self._cache, key=lambda k: self._cache[k].created_at)
        del self._cache[oldest_key]
        self._stats["evictions"] += 1
