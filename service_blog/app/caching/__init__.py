"""
Redis-backed caching for the Blog API.
"""

from service_blog.app.caching.redis_client import CacheStats, ConnectionState, PatternClearResult, RedisCacheClient
from service_blog.app.caching.middleware import (
    CacheAwareRoute,
    CacheInvalidator,
    DynamicPatterns,
    PendingCacheWrites,
    ReadThroughCache,
    StaticPatterns,
    default_cache_key,
    patterns_from,
    prefixed_cache_key,
)
from service_blog.app.caching.session_cache import SessionCache

__all__ = [
    "CacheAwareRoute",
    "CacheInvalidator",
    "CacheStats",
    "ConnectionState",
    "DynamicPatterns",
    "PatternClearResult",
    "PendingCacheWrites",
    "ReadThroughCache",
    "RedisCacheClient",
    "SessionCache",
    "StaticPatterns",
    "default_cache_key",
    "patterns_from",
    "prefixed_cache_key",
]
