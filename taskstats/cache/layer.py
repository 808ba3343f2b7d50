import asyncio
import json
import logging
from fnmatch import fnmatchcase
from typing import Any, Callable, Optional

from cachetools import TTLCache
from redis.asyncio import Redis, RedisError

from taskstats.core.config import Settings, get_settings

logger = logging.getLogger(__name__)


class CacheLayer:
    """
    Two-tier cache.

    L1: Process-local TTLCache (fast, limited size)
    L2: Redis (shared, larger capacity)

    Features:
    - Stampede protection with per-key locks
    - Graceful degradation when Redis is unavailable
    - Glob pattern invalidation across both tiers
    - Automatic key namespacing
    """

    def __init__(self, settings: Settings | None = None, redis: Redis | None = None):
        self._settings = settings
        self._redis = redis
        self.l1: TTLCache | None = None
        self._initialized = False

        # Per-key loader locks, bounded; TTL exceeds any realistic load time
        self._locks: TTLCache = TTLCache(maxsize=10_000, ttl=300)

        # Stats tracking
        self.stats = {
            "l1_hits": 0,
            "l2_hits": 0,
            "misses": 0,
            "errors": 0,
            "invalidations": 0,
        }

    @property
    def degraded(self) -> bool:
        """True when running L1-only."""
        return self._initialized and self._redis is None

    async def init_cache(self):
        """Initialize settings, L1 cache, and Redis connection."""
        if self._initialized:
            return

        if self._settings is None:
            self._settings = get_settings()

        settings = self._settings

        if self.l1 is None:
            self.l1 = TTLCache(maxsize=settings.l1_maxsize, ttl=settings.l1_ttl_seconds)

        try:
            if self._redis is None:
                self._redis = Redis.from_url(
                    settings.redis_dsn,
                    encoding="utf-8",
                    decode_responses=True,
                    max_connections=settings.redis_pool_size,
                    socket_connect_timeout=5,
                    socket_keepalive=True,
                    health_check_interval=30,
                )

            # Verify connection
            await self._redis.ping()
            logger.info("Redis connection established")

        except RedisError as e:
            logger.error("Redis initialization failed, running L1 only: %s", e)
            if self._redis is not None:
                try:
                    await self._redis.aclose()
                except RedisError as close_error:
                    logger.warning("Closing failed Redis client: %s", close_error)
            self._redis = None

        self._initialized = True
        logger.info("Cache layer initialized")

    def _l1_key(self, key: str) -> str:
        """Build namespaced L1 cache key."""
        return f"{self._settings.cache_namespace}l1:{key}"

    def _l2_key(self, key: str) -> str:
        """Build namespaced L2 cache key."""
        return f"{self._settings.cache_namespace}l2:{key}"

    def _serialize(self, value: Any) -> str:
        try:
            return json.dumps(value, default=str)
        except (TypeError, ValueError) as e:
            logger.error("Serialization failed: %s", e)
            raise

    def _deserialize(self, raw: str) -> Any:
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            # Return raw string if not valid JSON
            return raw

    def _lock_for(self, key: str) -> asyncio.Lock:
        # setdefault hands every concurrent caller the same lock object
        return self._locks.setdefault(key, asyncio.Lock())

    async def _l2_get(self, key: str) -> Any:
        if not self._redis:
            return None
        try:
            raw = await self._redis.get(self._l2_key(key))
        except RedisError as e:
            logger.error("Redis GET error for %s: %s", key, e)
            self.stats["errors"] += 1
            return None
        if raw is None:
            return None
        return self._deserialize(raw)

    async def get(
        self,
        key: str,
        loader: Optional[Callable[[], Any]] = None,
        l2_ttl: Optional[int] = None,
    ):
        """
        Retrieve value from cache hierarchy: L1 -> L2 -> loader.

        Args:
            key: Cache key (will be namespaced automatically)
            loader: Async function to load value on cache miss
            l2_ttl: TTL for L2 cache in seconds (uses default if None)

        Returns:
            Cached value or loaded value, or None if not found
        """
        await self.init_cache()

        l1_key = self._l1_key(key)

        # 1) Check L1 (fast path)
        if l1_key in self.l1:
            self.stats["l1_hits"] += 1
            logger.debug("L1 hit: %s", key)
            return self.l1[l1_key]

        # 2) Check L2 (Redis)
        value = await self._l2_get(key)
        if value is not None:
            self.stats["l2_hits"] += 1
            logger.debug("L2 hit: %s", key)
            self.l1[l1_key] = value
            return value

        # 3) Load from source (with stampede protection)
        if loader is None:
            self.stats["misses"] += 1
            logger.debug("Cache miss, no loader: %s", key)
            return None

        async with self._lock_for(key):
            # Double-check caches after acquiring lock
            if l1_key in self.l1:
                self.stats["l1_hits"] += 1
                return self.l1[l1_key]

            value = await self._l2_get(key)
            if value is not None:
                self.stats["l2_hits"] += 1
                self.l1[l1_key] = value
                return value

            self.stats["misses"] += 1
            logger.debug("Loading from source: %s", key)
            value = await loader()

            if value is None:
                return None

            await self._set_both_layers(key, value, l2_ttl)
            return value

    async def _set_both_layers(self, key: str, value: Any, l2_ttl: int | None = None):
        data = self._serialize(value)

        # L1 stores the decoded JSON so both tiers hand back the same shape
        self.l1[self._l1_key(key)] = json.loads(data)

        if self._redis:
            ttl = l2_ttl or self._settings.l2_ttl_seconds
            try:
                await self._redis.set(self._l2_key(key), data, ex=ttl)
                logger.debug("Stored in L2: %s (ttl=%ss)", key, ttl)
            except RedisError as e:
                logger.error("Redis SET error for %s: %s", key, e)
                self.stats["errors"] += 1

    async def set(self, key: str, value: Any, l2_ttl: Optional[int] = None):
        """
        Explicitly set a value in both cache layers.

        Args:
            key: Cache key (will be namespaced automatically)
            value: Value to cache
            l2_ttl: TTL for L2 cache in seconds
        """
        await self.init_cache()
        await self._set_both_layers(key, value, l2_ttl)

    async def delete(self, key: str):
        """Delete a key from both cache layers."""
        await self.init_cache()

        self.l1.pop(self._l1_key(key), None)

        if self._redis:
            try:
                await self._redis.delete(self._l2_key(key))
                logger.debug("Deleted from both layers: %s", key)
            except RedisError as e:
                logger.error("Redis DELETE error for %s: %s", key, e)
                self.stats["errors"] += 1

    async def delete_pattern(self, pattern: str) -> int:
        """
        Delete all keys matching a glob pattern from both layers.

        ``*`` matches any run of characters, ``?`` a single character.
        Returns the number of keys removed.
        """
        await self.init_cache()

        l1_pattern = self._l1_key(pattern)
        l1_matches = [k for k in list(self.l1.keys()) if fnmatchcase(k, l1_pattern)]
        for k in l1_matches:
            self.l1.pop(k, None)
        deleted_count = len(l1_matches)

        if self._redis:
            try:
                l2_pattern = self._l2_key(pattern)
                cursor = 0
                while True:
                    cursor, keys = await self._redis.scan(
                        cursor, match=l2_pattern, count=100
                    )
                    if keys:
                        await self._redis.delete(*keys)
                        deleted_count += len(keys)
                    if cursor == 0:
                        break
            except RedisError as e:
                logger.error("Pattern delete error for %s: %s", pattern, e)
                self.stats["errors"] += 1

        self.stats["invalidations"] += 1
        logger.debug("Pattern delete %s removed %d keys", pattern, deleted_count)
        return deleted_count

    async def close(self):
        """Graceful shutdown of cache connections."""
        if self._redis:
            try:
                await self._redis.aclose()
                logger.info("Redis connection closed")
            except RedisError as e:
                logger.error("Error closing Redis: %s", e)
            self._redis = None
        self._initialized = False

    def get_stats(self) -> dict:
        total = sum(
            [self.stats["l1_hits"], self.stats["l2_hits"], self.stats["misses"]]
        )

        return {
            **self.stats,
            "l1_size": len(self.l1) if self.l1 is not None else 0,
            "l1_maxsize": self.l1.maxsize if self.l1 is not None else 0,
            "redis": "connected" if self._redis else "unavailable",
            "hit_rate": (
                (self.stats["l1_hits"] + self.stats["l2_hits"]) / total
                if total > 0
                else 0
            ),
        }


# Cache layer instance (singleton per worker)
cache_layer = CacheLayer()
