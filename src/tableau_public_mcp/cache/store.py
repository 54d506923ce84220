"""
Bounded in-memory response cache.

Entries expire after their TTL and the store evicts the least recently used
entry once it reaches capacity. Values are opaque: the store never looks
inside them.
"""

import json
import re
import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from loguru import logger
from pydantic import BaseModel, Field


@dataclass
class CacheEntry:
    """A cached value with its lifetime metadata."""

    key: str
    value: Any
    created_at: float
    ttl: float
    last_accessed: float

    def is_fresh(self, now: float) -> bool:
        return now - self.created_at < self.ttl


class CacheStats(BaseModel):
    """Hit/miss counters for monitoring."""

    hits: int = 0
    misses: int = 0
    evictions: int = 0
    size: int = 0
    hit_rate: float = Field(default=0.0, description="Hit percentage over all lookups")


def make_cache_key(path: str, params: dict[str, Any] | None = None) -> str:
    """Build a cache key from a request path and its query parameters.

    Parameter order does not affect the key.

    Args:
        path: API path
        params: Optional query parameters

    Returns:
        The path alone, or ``path:{sorted params as JSON}``
    """
    if not params:
        return path
    encoded = json.dumps(params, sort_keys=True, separators=(",", ":"), default=str)
    return f"{path}:{encoded}"


class CacheStore:
    """LRU cache with per-entry TTL and statistics tracking."""

    def __init__(
        self,
        max_entries: int = 1000,
        default_ttl: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the store.

        Args:
            max_entries: Maximum number of entries kept at once
            default_ttl: Lifetime in seconds for entries stored without a TTL
            clock: Monotonic time source in seconds
        """
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        if default_ttl <= 0:
            raise ValueError("default_ttl must be greater than 0")

        self.max_entries = max_entries
        self.default_ttl = default_ttl
        self._clock = clock
        # Ordered from least to most recently used
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get a fresh value from the cache.

        A stale entry is removed and reported as a miss.

        Args:
            key: Cache key
            default: Returned when the key is absent or expired

        Returns:
            The cached value, or ``default``
        """
        with self._lock:
            entry = self._entries.get(key)
            now = self._clock()

            if entry is None:
                self._misses += 1
                return default

            if not entry.is_fresh(now):
                del self._entries[key]
                self._misses += 1
                logger.debug("Cache entry expired: {}", key)
                return default

            entry.last_accessed = now
            self._entries.move_to_end(key)
            self._hits += 1
            return entry.value

    def put(self, key: str, value: Any, ttl: float | None = None) -> None:
        """
        Store a value, replacing any existing entry for the key.

        Args:
            key: Cache key
            value: Opaque value to store
            ttl: Lifetime in seconds (defaults to the store's default TTL)

        Raises:
            ValueError: If the TTL is not positive
        """
        effective_ttl = self.default_ttl if ttl is None else ttl
        if effective_ttl <= 0:
            raise ValueError("TTL must be greater than 0")

        with self._lock:
            now = self._clock()
            if key in self._entries:
                del self._entries[key]
            elif len(self._entries) >= self.max_entries:
                self._make_room(now)

            self._entries[key] = CacheEntry(
                key=key,
                value=value,
                created_at=now,
                ttl=effective_ttl,
                last_accessed=now,
            )

    def _make_room(self, now: float) -> None:
        """Drop stale entries, then the least recently used one if still full."""
        self._purge_expired_locked(now)
        while len(self._entries) >= self.max_entries:
            evicted_key, _ = self._entries.popitem(last=False)
            self._evictions += 1
            logger.debug("Cache evicted LRU entry: {}", evicted_key)

    def delete(self, key: str) -> bool:
        """Remove a key. Returns True if it was present."""
        with self._lock:
            return self._entries.pop(key, None) is not None

    def has(self, key: str) -> bool:
        """Check if a key exists and is not expired (does not touch recency)."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False
            if not entry.is_fresh(self._clock()):
                del self._entries[key]
                return False
            return True

    def __contains__(self, key: str) -> bool:
        return self.has(key)

    def __len__(self) -> int:
        """Number of fresh entries; stale ones are purged first."""
        with self._lock:
            self._purge_expired_locked(self._clock())
            return len(self._entries)

    def keys(self) -> list[str]:
        """Fresh keys, least recently used first."""
        with self._lock:
            self._purge_expired_locked(self._clock())
            return list(self._entries)

    def invalidate_pattern(self, pattern: str | re.Pattern[str]) -> int:
        """
        Remove every entry whose key matches a regular expression.

        Args:
            pattern: Regex searched against each key

        Returns:
            Number of entries removed
        """
        regex = re.compile(pattern) if isinstance(pattern, str) else pattern
        with self._lock:
            matched = [key for key in self._entries if regex.search(key)]
            for key in matched:
                del self._entries[key]
        if matched:
            logger.debug("Invalidated {} cache entries matching {}", len(matched), regex.pattern)
        return len(matched)

    def purge_expired(self) -> int:
        """Remove all stale entries. Returns the number removed."""
        with self._lock:
            return self._purge_expired_locked(self._clock())

    def _purge_expired_locked(self, now: float) -> int:
        stale = [key for key, entry in self._entries.items() if not entry.is_fresh(now)]
        for key in stale:
            del self._entries[key]
        return len(stale)

    def clear(self) -> None:
        """Remove all entries (statistics are kept)."""
        with self._lock:
            self._entries.clear()

    def stats(self) -> CacheStats:
        """Return a snapshot of the cache statistics."""
        with self._lock:
            self._purge_expired_locked(self._clock())
            total = self._hits + self._misses
            return CacheStats(
                hits=self._hits,
                misses=self._misses,
                evictions=self._evictions,
                size=len(self._entries),
                hit_rate=(self._hits / total) * 100 if total else 0.0,
            )

    def reset_stats(self) -> None:
        """Reset hit/miss/eviction counters."""
        with self._lock:
            self._hits = 0
            self._misses = 0
            self._evictions = 0
