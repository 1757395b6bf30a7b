"""
Entry Cache

A bounded, TTL-limited, in-process map from CacheKey to payload.

DESIGN DECISION: Expiry and eviction are lazy.
- An expired entry is removed by the access that finds it expired.
- Capacity is enforced when a NEW key is inserted: the entry with the
  oldest ``stored_at`` goes first. Overwriting a key never evicts.
There is no background sweep.

Every operation runs under one lock and never awaits, so concurrently
resumed coroutines (or threads) never observe a half-updated map.
"""

import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

import structlog

from src.cache.keys import CacheKey, CacheKeyPrefix


logger = structlog.get_logger(__name__)

Clock = Callable[[], float]


@dataclass
class CacheEntry:
    key: CacheKey
    payload: Any
    stored_at: float

    def is_expired(self, now: float, ttl: float) -> bool:
        return now - self.stored_at > ttl


@dataclass(frozen=True)
class CacheLookup:
    """
    Result of a lookup.

    ``hit`` distinguishes a cached ``None`` from absence. ``stale_payload``
    carries the value of an entry that was just found expired (and removed),
    for callers that prefer old data over no data when the store is down.
    """

    hit: bool
    payload: Any = None
    stale_payload: Any = None
    had_stale: bool = False


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    expirations: int = 0
    evictions: int = 0
    size: int = 0
    max_entries: int = 0


class EntryCache:
    """
    TTL + capacity bounded cache.

    Args:
        ttl_seconds: visibility window of an entry, measured from ``stored_at``
        max_entries: capacity; inserting a new key beyond it evicts the oldest
        clock: monotonic time source, injectable for tests
    """

    def __init__(
        self,
        ttl_seconds: float = 300.0,
        max_entries: int = 50,
        clock: Optional[Clock] = None,
    ):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self._ttl = ttl_seconds
        self._max_entries = max_entries
        self._clock = clock or time.monotonic
        self._entries: dict[CacheKey, CacheEntry] = {}
        self._lock = threading.RLock()
        self._stats = CacheStats(max_entries=max_entries)

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    @property
    def max_entries(self) -> int:
        return self._max_entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: CacheKey) -> bool:
        return self.lookup(key).hit

    def lookup(self, key: CacheKey) -> CacheLookup:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._stats.misses += 1
                return CacheLookup(hit=False)
            if entry.is_expired(self._clock(), self._ttl):
                del self._entries[key]
                self._stats.expirations += 1
                self._stats.misses += 1
                return CacheLookup(hit=False, stale_payload=entry.payload, had_stale=True)
            self._stats.hits += 1
            return CacheLookup(hit=True, payload=entry.payload)

    def get(self, key: CacheKey, default: Any = None) -> Any:
        """Payload if present and fresh, else ``default``."""
        result = self.lookup(key)
        return result.payload if result.hit else default

    def set(self, key: CacheKey, payload: Any) -> None:
        with self._lock:
            now = self._clock()
            if key not in self._entries and len(self._entries) >= self._max_entries:
                self._evict_oldest()
            self._entries[key] = CacheEntry(key=key, payload=payload, stored_at=now)

    def _evict_oldest(self) -> None:
        oldest = min(self._entries.values(), key=lambda e: e.stored_at)
        del self._entries[oldest.key]
        self._stats.evictions += 1
        logger.debug("cache_evicted", key=oldest.key.encode())

    def invalidate(self, prefix: CacheKeyPrefix) -> int:
        """Remove every entry under ``prefix``. Returns how many were removed."""
        with self._lock:
            doomed = [key for key in self._entries if prefix.matches(key)]
            for key in doomed:
                del self._entries[key]
            return len(doomed)

    def discard(self, key: CacheKey) -> bool:
        """Remove one entry. Returns whether it was present."""
        with self._lock:
            return self._entries.pop(key, None) is not None

    def patch_entries(
        self,
        prefix: CacheKeyPrefix,
        transform: Callable[[list], list],
    ) -> int:
        """
        Replace every cached list under ``prefix`` with ``transform(list)``.

        Non-list payloads (settings documents) are left alone. ``stored_at``
        is kept, so patching never extends an entry's lifetime.
        Returns the number of entries patched.
        """
        with self._lock:
            patched = 0
            for key, entry in self._entries.items():
                if prefix.matches(key) and isinstance(entry.payload, list):
                    entry.payload = transform(entry.payload)
                    patched += 1
            return patched

    def clear(self) -> int:
        with self._lock:
            removed = len(self._entries)
            self._entries.clear()
            return removed

    def keys(self) -> list[CacheKey]:
        """Snapshot of the keys currently stored (expired ones included)."""
        with self._lock:
            return list(self._entries)

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(
                hits=self._stats.hits,
                misses=self._stats.misses,
                expirations=self._stats.expirations,
                evictions=self._stats.evictions,
                size=len(self._entries),
                max_entries=self._max_entries,
            )
