"""
Serving Module
"""
from .cache import AnalyticsCache, CacheKeys, InMemoryCache, RedisCache, build_cache, org_tag

__all__ = [
    "AnalyticsCache",
    "CacheKeys",
    "InMemoryCache",
    "RedisCache",
    "build_cache",
    "org_tag",
]
