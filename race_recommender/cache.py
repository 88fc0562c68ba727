"""
Recommendation caching module.

Provides an in-memory key/value cache with per-entry TTL and hit/miss
counters. Entries expire lazily: an expired entry is evicted the next time
it is read and counts as a miss.
"""

import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from race_recommender import config


@dataclass
class CacheEntry:
    value: Any
    expires_at: float


@dataclass
class CacheStats:
    """Snapshot of cache usage counters."""
    hits: int
    misses: int
    size: int

    @property
    def total_requests(self) -> int:
        return self.hits + self.misses

    @property
    def hit_rate(self) -> float:
        if self.total_requests == 0:
            return 0.0
        return self.hits / self.total_requests


class CacheKeys:
    """Builders for deterministic cache keys."""

    @staticmethod
    def racing_opportunities(week: str) -> str:
        return f"racing-opportunities:{week}"

    @staticmethod
    def global_stats(series_id: int, track_id: int) -> str:
        return f"global_stats:{series_id}:{track_id}"

    @staticmethod
    def user_history(user_id: str) -> str:
        return f"user_history:{user_id}"

    @staticmethod
    def primary_category(user_id: str) -> str:
        return f"primary_category:{user_id}"


class RecommendationCache:
    """
    Thread-safe in-memory cache with TTL support.

    One instance is created at startup and handed to the engine and batch
    processor; tests build a fresh one per case.
    """

    def __init__(
        self,
        default_ttl: int = config.CACHE_TTL_USER_PERFORMANCE,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Initialize cache.

        Args:
            default_ttl: TTL in seconds used when set() is called without one
            clock: Monotonic time source in seconds
        """
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    def get(self, key: str) -> Optional[Any]:
        """
        Retrieve a cached value if it has not expired.

        Args:
            key: Cache key identifier

        Returns:
            Cached value, or None if missing or expired
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            if self._clock() >= entry.expires_at:
                del self._entries[key]
                self._misses += 1
                return None
            self._hits += 1
            return entry.value

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        """
        Store a value with an expiration time.

        Args:
            key: Cache key identifier
            value: Value to cache
            ttl: Time to live in seconds (defaults to default_ttl)
        """
        ttl = self.default_ttl if ttl is None else ttl
        with self._lock:
            self._entries[key] = CacheEntry(value=value, expires_at=self._clock() + ttl)

    def is_valid(self, key: str) -> bool:
        """Check if a key holds an unexpired value without touching the counters."""
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and self._clock() < entry.expires_at

    def delete(self, key: str) -> bool:
        """
        Remove a single entry.

        Returns:
            True if the key was present
        """
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        """Remove every entry and reset the counters."""
        with self._lock:
            self._entries.clear()
            self._hits = 0
            self._misses = 0

    def cleanup(self) -> int:
        """
        Evict all expired entries.

        Returns:
            Number of entries removed
        """
        with self._lock:
            now = self._clock()
            expired = [k for k, e in self._entries.items() if now >= e.expires_at]
            for key in expired:
                del self._entries[key]
            return len(expired)

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._entries)

    @property
    def size(self) -> int:
        with self._lock:
            return len(self._entries)

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(hits=self._hits, misses=self._misses, size=len(self._entries))
