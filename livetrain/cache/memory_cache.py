"""
In-memory LRU cache implementation.

Short-lived cache for API lookups that are requested repeatedly within a
few seconds, such as journey details for a selected train.
"""

import logging
import threading
import time
from collections import OrderedDict
from typing import Any, Callable, Dict, Optional, Tuple

logger = logging.getLogger(__name__)


class MemoryCache:
    """Thread-safe LRU cache with TTL support."""

    def __init__(
        self,
        max_size: int = 256,
        default_ttl: float = 15,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize memory cache.

        Args:
            max_size: Maximum number of items to store
            default_ttl: Default time-to-live in seconds
            clock: Monotonic time source in seconds
        """
        self.max_size = max_size
        self.default_ttl = default_ttl
        self._clock = clock
        self._cache: "OrderedDict[str, Tuple[Any, float]]" = OrderedDict()
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0

    def get(self, key: str) -> Optional[Any]:
        """
        Get item from cache.

        Args:
            key: Cache key

        Returns:
            Cached value or None if not found/expired
        """
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                self._misses += 1
                return None

            value, expires_at = entry
            if self._clock() >= expires_at:
                del self._cache[key]
                self._misses += 1
                return None

            self._cache.move_to_end(key)
            self._hits += 1
            return value

    def put(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        """
        Put item in cache.

        Args:
            key: Cache key
            value: Value to cache
            ttl: Time-to-live in seconds (uses default if None)
        """
        ttl = self.default_ttl if ttl is None else ttl
        if ttl <= 0:
            return

        with self._lock:
            self._cache[key] = (value, self._clock() + ttl)
            self._cache.move_to_end(key)

            while len(self._cache) > self.max_size:
                evicted, _ = self._cache.popitem(last=False)
                logger.debug(f"Evicted cache key: {evicted}")

    def delete(self, key: str) -> bool:
        """
        Delete item from cache.

        Returns:
            True if item was deleted, False if not found
        """
        with self._lock:
            return self._cache.pop(key, None) is not None

    def clear(self) -> None:
        """Clear all items and statistics."""
        with self._lock:
            self._cache.clear()
            self._hits = 0
            self._misses = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)

    def get_stats(self) -> Dict[str, Any]:
        """
        Get cache statistics.

        Returns:
            Dictionary with cache statistics
        """
        with self._lock:
            total_requests = self._hits + self._misses
            return {
                "size": len(self._cache),
                "max_size": self.max_size,
                "hits": self._hits,
                "misses": self._misses,
                "hit_rate": (self._hits / total_requests) if total_requests else 0,
            }


class CacheKey:
    """Helper class for generating consistent cache keys."""

    @staticmethod
    def journey_key(train_number: str) -> str:
        """Generate cache key for journey detail lookups."""
        return f"journey:{str(train_number).strip()}"
