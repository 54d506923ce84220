"""
Response caching package.

Provides the bounded TTL/LRU store and the coordinator that deduplicates
and throttles outbound calls on cache misses.
"""

from .coordinator import InFlightRequest, RequestCoordinator
from .store import CacheEntry, CacheStats, CacheStore, make_cache_key

__all__ = [
    "CacheEntry",
    "CacheStats",
    "CacheStore",
    "InFlightRequest",
    "RequestCoordinator",
    "make_cache_key",
]
