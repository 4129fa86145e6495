"""
Read-Through Cache: Memoized get/has with Separate Not-Found TTL

Provides an optional in-process cache in front of the object store:
- Data cache: physical name -> bytes, or the NotFoundError last seen
- Existence cache: physical name -> bool
- Per-entry deadlines; positive and negative entries use different TTLs
- LRU eviction once a table holds max_entries names
- Generation counters so a load racing an invalidation cannot
  repopulate a stale entry

Data Model:
    Key: physical object name
    Entry: (value | bool | NotFoundError, expires_at_ns)

Design:
    Misses are not coalesced: concurrent misses for one name each hit
    the backend, and the last to finish wins. Generation counters exist
    only while a load for the name is in flight.
"""

from __future__ import annotations

import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from datastore_s3.core import constants as C
from datastore_s3.core.errors import NotFoundError
from datastore_s3.core.types import Err, Ok, Result


Clock = Callable[[], int]
Loader = Callable[[], Awaitable[Result[Any, Any]]]


# =============================================================================
# CACHE ENTRY
# =============================================================================
@dataclass(slots=True)
class CacheEntry:
    """
    Cached outcome of one remote read.

    ``value`` is bytes or bool for positive entries, or the captured
    NotFoundError for negative data entries.
    """
    value: Any
    expires_at_ns: int

    def is_expired(self, now_ns: int) -> bool:
        return now_ns >= self.expires_at_ns

    @property
    def is_negative(self) -> bool:
        return isinstance(self.value, NotFoundError) or self.value is False


def _replay_not_found(error: NotFoundError) -> NotFoundError:
    # A new instance per hit; re-raising the stored one would keep
    # extending its traceback.
    return NotFoundError(
        code=error.code,
        message=error.message,
        context=dict(error.context),
    )


# =============================================================================
# CACHE STATISTICS
# =============================================================================
@dataclass
class CacheStats:
    """Cache performance statistics."""
    hits: int = 0
    misses: int = 0
    negative_hits: int = 0
    expirations: int = 0
    invalidations: int = 0
    evictions: int = 0

    @property
    def hit_rate(self) -> float:
        """Calculate cache hit rate, negative hits included."""
        total = self.hits + self.negative_hits + self.misses
        return (self.hits + self.negative_hits) / total if total > 0 else 0.0


# =============================================================================
# READ-THROUGH CACHE
# =============================================================================
class ReadThroughCache:
    """
    Optional memoization of get/has outcomes.

    When disabled, every call goes straight to the loader and nothing
    is stored.

    Example:
        cache = ReadThroughCache(enabled=True)
        result = await cache.get(name, lambda: facade.get(key))
    """

    __slots__ = (
        "_enabled",
        "_ttl_ns",
        "_not_found_ttl_ns",
        "_max_entries",
        "_clock",
        "_data",
        "_exists",
        "_generations",
        "_inflight",
        "_epoch",
        "_stats",
    )

    def __init__(
        self,
        enabled: bool = False,
        ttl_ms: int = C.DEFAULT_CACHE_TTL_MS,
        not_found_ttl_ms: int = C.DEFAULT_NOT_FOUND_CACHE_TTL_MS,
        clock: Optional[Clock] = None,
        max_entries: int = C.DEFAULT_CACHE_MAX_ENTRIES,
    ) -> None:
        """
        Args:
            enabled: Store outcomes at all.
            ttl_ms: Lifetime of values and True existence results.
            not_found_ttl_ms: Lifetime of not-found and False results.
            clock: Nanosecond clock; defaults to time.monotonic_ns.
            max_entries: Capacity of each table before LRU eviction.
        """
        if ttl_ms <= 0 or not_found_ttl_ms <= 0:
            raise ValueError("cache TTLs must be > 0")
        if max_entries <= 0:
            raise ValueError("max_entries must be > 0")
        self._enabled = enabled
        self._ttl_ns = ttl_ms * C.NS_PER_MS
        self._not_found_ttl_ns = not_found_ttl_ms * C.NS_PER_MS
        self._max_entries = max_entries
        self._clock: Clock = clock or time.monotonic_ns
        self._data: OrderedDict[str, CacheEntry] = OrderedDict()
        self._exists: OrderedDict[str, CacheEntry] = OrderedDict()
        self._generations: Dict[str, int] = {}
        self._inflight: Dict[str, int] = {}
        self._epoch = 0
        self._stats = CacheStats()

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def stats(self) -> CacheStats:
        return self._stats

    @property
    def tracked_generations(self) -> int:
        """Names with a generation counter, i.e. with a load in flight."""
        return len(self._generations)

    def __len__(self) -> int:
        return len(self._data) + len(self._exists)

    def _generation(self, name: str) -> tuple[int, int]:
        return (self._epoch, self._generations.get(name, 0))

    def _begin_load(self, name: str) -> tuple[int, int]:
        self._inflight[name] = self._inflight.get(name, 0) + 1
        return self._generation(name)

    def _end_load(self, name: str) -> None:
        remaining = self._inflight.get(name, 0) - 1
        if remaining > 0:
            self._inflight[name] = remaining
            return
        self._inflight.pop(name, None)
        self._generations.pop(name, None)

    def _lookup(self, table: OrderedDict[str, CacheEntry], name: str) -> Optional[CacheEntry]:
        entry = table.get(name)
        if entry is None:
            self._stats.misses += 1
            return None
        if entry.is_expired(self._clock()):
            del table[name]
            self._stats.expirations += 1
            self._stats.misses += 1
            return None
        table.move_to_end(name)
        if entry.is_negative:
            self._stats.negative_hits += 1
        else:
            self._stats.hits += 1
        return entry

    def _store(
        self,
        table: OrderedDict[str, CacheEntry],
        name: str,
        value: Any,
        negative: bool,
        generation: tuple[int, int],
    ) -> None:
        if self._generation(name) != generation:
            return
        ttl_ns = self._not_found_ttl_ns if negative else self._ttl_ns
        table[name] = CacheEntry(value=value, expires_at_ns=self._clock() + ttl_ns)
        table.move_to_end(name)
        self._sweep_expired(table)
        while len(table) > self._max_entries:
            self._evict_lru(table)

    def _sweep_expired(self, table: OrderedDict[str, CacheEntry]) -> None:
        """Drop expired entries from the least recently used end."""
        now = self._clock()
        while table:
            name, entry = next(iter(table.items()))
            if not entry.is_expired(now):
                return
            del table[name]
            self._stats.expirations += 1

    def _evict_lru(self, table: OrderedDict[str, CacheEntry]) -> None:
        """Evict least recently used entry."""
        table.popitem(last=False)
        self._stats.evictions += 1

    async def get(self, name: str, loader: Loader) -> Result[bytes, Any]:
        """
        Cached value for ``name``, loading it on a miss.

        A cached NotFoundError is returned as a fresh Err without calling
        the loader. Other loader errors are passed through uncached.
        """
        if not self._enabled:
            return await loader()

        entry = self._lookup(self._data, name)
        if entry is not None:
            if isinstance(entry.value, NotFoundError):
                return Err(_replay_not_found(entry.value))
            return Ok(entry.value)

        generation = self._begin_load(name)
        try:
            result = await loader()
            if result.is_ok():
                self._store(self._data, name, result.value, False, generation)
            elif isinstance(result.error, NotFoundError):
                self._store(self._data, name, _replay_not_found(result.error), True, generation)
        finally:
            self._end_load(name)
        return result

    async def has(self, name: str, loader: Loader) -> Result[bool, Any]:
        """Cached existence of ``name``, probing on a miss."""
        if not self._enabled:
            return await loader()

        entry = self._lookup(self._exists, name)
        if entry is not None:
            return Ok(entry.value)

        generation = self._begin_load(name)
        try:
            result = await loader()
            if result.is_ok():
                exists = bool(result.value)
                self._store(self._exists, name, exists, not exists, generation)
        finally:
            self._end_load(name)
        return result

    def invalidate(self, name: str) -> None:
        """Evict every entry for ``name``, positive or negative."""
        if not self._enabled:
            return
        if name in self._inflight:
            self._generations[name] = self._generations.get(name, 0) + 1
        self._data.pop(name, None)
        self._exists.pop(name, None)
        self._stats.invalidations += 1

    def clear(self) -> None:
        self._data.clear()
        self._exists.clear()
        self._generations.clear()
        self._epoch += 1


__all__ = [
    "CacheEntry",
    "CacheStats",
    "ReadThroughCache",
]
