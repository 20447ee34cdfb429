"""
Analytics Response Cache

Cache abstraction injected into the API layer:
- Automatic JSON serialization
- TTL management
- Tag-based invalidation (every analytics entry is tagged with its org)

RedisCache is used in deployments; InMemoryCache backs tests and
single-process runs, and stands in when Redis is unreachable at startup.
"""

import json
import time
from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import Any, Callable, Dict, Iterable, Optional, Set, Tuple

import structlog
from redis.asyncio import Redis

logger = structlog.get_logger(__name__)


def org_tag(org_id: str) -> str:
    return f"org:{org_id}"


class CacheKeys:
    """Key builders for cached analytics responses"""

    @staticmethod
    def overview(org_id: str, window_days: int) -> str:
        return f"analytics:overview:{org_id}:{window_days}"

    @staticmethod
    def revenue(
        org_id: str,
        period: str,
        year: Optional[int] = None,
        quarter: Optional[int] = None,
        month: Optional[int] = None,
        start_date: Optional[date] = None,
    ) -> str:
        return f"analytics:revenue:{org_id}:{period}:{year or '-'}:{quarter or '-'}:{month or '-'}:{start_date or '-'}"

    @staticmethod
    def payment_patterns(org_id: str, start: Optional[datetime], end: Optional[datetime]) -> str:
        start_key = start.isoformat() if start else "-"
        end_key = end.isoformat() if end else "-"
        return f"analytics:payment-patterns:{org_id}:{start_key}:{end_key}"

    @staticmethod
    def dashboard(org_id: str) -> str:
        return f"dashboard:stats:{org_id}"


def _serialize(value: Any) -> str:
    return json.dumps(value, default=str)


class AnalyticsCache(ABC):
    """
    Async key/value cache with TTL and tag invalidation.

    Example:
        await cache.set(key, payload, ttl=300, tags=[org_tag(org_id)])
        await cache.invalidate_tags([org_tag(org_id)])
    """

    def __init__(self, default_ttl: int = 300):
        self.default_ttl = default_ttl

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """Cached value or None"""

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: Optional[int] = None, tags: Iterable[str] = ()) -> bool:
        """Store a JSON-serializable value"""

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Remove one key"""

    @abstractmethod
    async def invalidate_tags(self, tags: Iterable[str]) -> int:
        """Remove every key stored under any of the tags; returns keys removed"""

    async def ping(self) -> None:
        """Raise if the cache backend is unreachable"""

    async def close(self) -> None:
        pass


class RedisCache(AnalyticsCache):
    """
    Redis-backed cache.

    Tags are Redis sets holding the keys stored under them; entries expire
    on their own TTL and invalidation deletes whatever the set still names.
    """

    def __init__(self, client: Redis, key_prefix: str = "invoice-analytics", default_ttl: int = 300):
        super().__init__(default_ttl)
        self.client = client
        self.key_prefix = key_prefix

    def _key(self, key: str) -> str:
        return f"{self.key_prefix}:{key}"

    def _tag_key(self, tag: str) -> str:
        return f"{self.key_prefix}:tag:{tag}"

    async def get(self, key: str) -> Optional[Any]:
        value = await self.client.get(self._key(key))
        if value is None:
            return None

        try:
            return json.loads(value)
        except json.JSONDecodeError:
            return value

    async def set(self, key: str, value: Any, ttl: Optional[int] = None, tags: Iterable[str] = ()) -> bool:
        try:
            serialized = _serialize(value)
        except (TypeError, ValueError) as e:
            logger.warning("Failed to serialize value for cache", key=key, error=str(e))
            return False

        full_key = self._key(key)
        async with self.client.pipeline(transaction=True) as pipe:
            pipe.setex(full_key, ttl or self.default_ttl, serialized)
            for tag in tags:
                pipe.sadd(self._tag_key(tag), full_key)
            await pipe.execute()
        return True

    async def delete(self, key: str) -> bool:
        return await self.client.delete(self._key(key)) > 0

    async def invalidate_tags(self, tags: Iterable[str]) -> int:
        tags = list(tags)
        removed = 0
        for tag in tags:
            tag_key = self._tag_key(tag)
            keys = await self.client.smembers(tag_key)
            if keys:
                removed += await self.client.delete(*keys)
            await self.client.delete(tag_key)
        logger.info("Cache tags invalidated", tags=tags, keys_removed=removed)
        return removed

    async def ping(self) -> None:
        await self.client.ping()

    async def close(self) -> None:
        await self.client.aclose()
        logger.info("Redis connection closed")


class InMemoryCache(AnalyticsCache):
    """
    Process-local cache.

    Values are kept serialized so callers always receive fresh copies,
    the same as with Redis.
    """

    def __init__(self, default_ttl: int = 300, clock: Callable[[], float] = time.monotonic):
        super().__init__(default_ttl)
        self._clock = clock
        self._entries: Dict[str, Tuple[float, str]] = {}
        self._tags: Dict[str, Set[str]] = {}

    async def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None

        expires_at, serialized = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return json.loads(serialized)

    async def set(self, key: str, value: Any, ttl: Optional[int] = None, tags: Iterable[str] = ()) -> bool:
        try:
            serialized = _serialize(value)
        except (TypeError, ValueError) as e:
            logger.warning("Failed to serialize value for cache", key=key, error=str(e))
            return False

        now = self._clock()
        self._purge_expired(now)
        self._entries[key] = (now + (ttl or self.default_ttl), serialized)
        for tag in tags:
            self._tags.setdefault(tag, set()).add(key)
        return True

    async def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def _purge_expired(self, now: float) -> None:
        """Drop expired entries and tag members that no longer name an entry"""
        for key in [key for key, (expires_at, _) in self._entries.items() if now >= expires_at]:
            del self._entries[key]
        for tag in list(self._tags):
            self._tags[tag] = {key for key in self._tags[tag] if key in self._entries}
            if not self._tags[tag]:
                del self._tags[tag]

    async def invalidate_tags(self, tags: Iterable[str]) -> int:
        removed = 0
        for tag in tags:
            for key in self._tags.pop(tag, set()):
                if self._entries.pop(key, None) is not None:
                    removed += 1
        return removed


def create_redis_client(settings) -> Redis:
    """Redis client from the application settings"""
    return Redis.from_url(
        settings.redis.get_url(),
        max_connections=settings.redis.max_connections,
        socket_timeout=settings.redis.socket_timeout,
        decode_responses=True,
    )


async def build_cache(settings) -> AnalyticsCache:
    """
    Cache for the configured backend.

    Falls back to InMemoryCache when Redis does not answer a ping.
    """
    if settings.cache.backend == "memory":
        return InMemoryCache(default_ttl=settings.cache.default_ttl)

    client = create_redis_client(settings)
    try:
        await client.ping()
    except Exception as e:
        logger.warning("Redis unavailable, using in-memory cache", error=str(e))
        await client.aclose()
        return InMemoryCache(default_ttl=settings.cache.default_ttl)

    logger.info("Redis connection established")
    return RedisCache(client, key_prefix=settings.cache.key_prefix, default_ttl=settings.cache.default_ttl)
