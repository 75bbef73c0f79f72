"""
Caching for API lookups.

The snapshot cache itself lives in the data service; this package provides
the short-lived cache used for per-train lookups.
"""

from .memory_cache import CacheKey, MemoryCache

__all__ = [
    'CacheKey',
    'MemoryCache',
]
