"""
Redis cache management for health status caching and rate-window counters.
"""
from typing import Optional, Any
import json
from redis import asyncio as aioredis
from redis.exceptions import RedisError

from orchestrator.core.logger import get_logger

logger = get_logger(__name__)


class RedisCache:
    """Redis cache manager with connection pooling."""

    def __init__(self, url: str, enabled: bool = True, default_ttl: int = 300):
        self.url = url
        self.enabled = enabled
        self.default_ttl = default_ttl
        self.redis: Optional[aioredis.Redis] = None

    async def connect(self) -> None:
        """Establish Redis connection."""
        if not self.enabled:
            logger.info("Redis cache is disabled")
            return

        try:
            self.redis = aioredis.from_url(
                self.url,
                encoding="utf-8",
                decode_responses=True,
                max_connections=10
            )
            # Test connection
            await self.redis.ping()
            logger.info(
                "Redis cache connected successfully",
                host=self.redis.connection_pool.connection_kwargs.get("host"),
            )
        except RedisError as e:
            logger.error("Failed to connect to Redis", error=str(e))
            self.enabled = False
            self.redis = None

    async def disconnect(self) -> None:
        """Close Redis connection."""
        if self.redis:
            await self.redis.aclose()
            self.redis = None
            logger.info("Redis cache disconnected")

    @property
    def available(self) -> bool:
        """True when connected and usable."""
        return self.enabled and self.redis is not None

    async def get(self, key: str) -> Optional[Any]:
        """
        Get value from cache.

        Args:
            key: Cache key

        Returns:
            Cached value or None if not found
        """
        if not self.available:
            return None

        try:
            value = await self.redis.get(key)
            if value:
                return json.loads(value)
            return None
        except RedisError as e:
            logger.warning("Redis get failed", key=key, error=str(e))
            return None

    async def set(
        self,
        key: str,
        value: Any,
        ttl: Optional[int] = None
    ) -> bool:
        """
        Set value in cache.

        Args:
            key: Cache key
            value: JSON-serializable value
            ttl: Time to live in seconds (default from constructor)

        Returns:
            True if successful, False otherwise
        """
        if not self.available:
            return False

        try:
            await self.redis.setex(key, ttl or self.default_ttl, json.dumps(value, default=str))
            return True
        except RedisError as e:
            logger.warning("Redis set failed", key=key, error=str(e))
            return False

    async def increment_window(self, key: str, ttl: int) -> int:
        """
        Atomically increment a window counter and refresh its expiry.

        Args:
            key: Counter key (includes the window index)
            ttl: Expiry in seconds

        Returns:
            Counter value after the increment

        Raises:
            RedisError: If the counter could not be updated
        """
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.incr(key)
            pipe.expire(key, ttl)
            count, _ = await pipe.execute()
        return int(count)

    async def read_counter(self, key: str) -> int:
        """Current value of a counter key (0 when absent)."""
        value = await self.redis.get(key)
        return int(value) if value else 0


# Cache key generators
def health_cache_key(provider_id: str) -> str:
    """Generate cache key for provider health status."""
    return f"health:provider:{provider_id}"


def rate_window_key(provider_id: str, window_index: int) -> str:
    """Generate cache key for a provider's fixed rate-limit window."""
    return f"ratelimit:provider:{provider_id}:{window_index}"
