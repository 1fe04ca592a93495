"""
Cache-aside storage for upstream query results.

The store never raises on backend trouble: reads degrade to misses and
writes to no-ops, so the request path only ever pays for latency.
"""

from .backends import CacheBackend, InMemoryBackend, RedisBackend
from .cache_store import CacheStore, build_key

__all__ = [
    "CacheBackend",
    "CacheStore",
    "InMemoryBackend",
    "RedisBackend",
    "build_key",
]
