"""
Gateway caching package.

Provides the bounded TTL cache the gateway serves warm reads from, and the
key helpers used to address and invalidate its entries. Prefer short-lived
entries and explicit invalidation on mutation.
"""

from .ttl_cache import BoundedTTLCache, CacheEntry, CacheStats
from .keys import make_cache_key, sorted_query_string, invalidation_matcher

__all__ = [
    "BoundedTTLCache",
    "CacheEntry",
    "CacheStats",
    "make_cache_key",
    "sorted_query_string",
    "invalidation_matcher",
]
