"""
Per-provider request rate limiting.

Two interchangeable limiters share one interface: an in-process sliding
window and a Redis fixed window that stays atomic across processes.
"""
import asyncio
from collections import defaultdict, deque
from datetime import datetime
from typing import Deque, Dict, Optional

from redis.exceptions import RedisError

from orchestrator.core.cache import RedisCache, rate_window_key
from orchestrator.core.clock import Clock, utc_now
from orchestrator.core.logger import get_logger

logger = get_logger(__name__)

_EPOCH = datetime(1970, 1, 1)


def _seconds(moment: datetime) -> float:
    return (moment - _EPOCH).total_seconds()


class SlidingWindowRateLimiter:
    """In-process sliding-window limiter."""

    def __init__(self, window_seconds: float = 60.0, clock: Clock = utc_now) -> None:
        """Initialize rate limiter.

        Args:
            window_seconds: Time window in seconds.
            clock: Returns the current naive UTC time.
        """
        self._window_seconds = window_seconds
        self._clock = clock
        self._timestamps: Dict[str, Deque[float]] = defaultdict(deque)
        self._lock = asyncio.Lock()

    def _prune(self, key: str, now: float) -> Deque[float]:
        timestamps = self._timestamps[key]
        while timestamps and now - timestamps[0] >= self._window_seconds:
            timestamps.popleft()
        return timestamps

    async def acquire(self, key: str, limit: int) -> bool:
        """Consume one slot if the window has room.

        Args:
            key: Provider id.
            limit: Maximum calls per window.

        Returns:
            True if the call is admitted.
        """
        async with self._lock:
            now = _seconds(self._clock())
            timestamps = self._prune(key, now)
            if len(timestamps) >= limit:
                return False
            timestamps.append(now)
            return True

    async def remaining(self, key: str, limit: int) -> int:
        """Slots left in the current window, without consuming one."""
        async with self._lock:
            timestamps = self._prune(key, _seconds(self._clock()))
            return max(limit - len(timestamps), 0)


class RedisWindowRateLimiter:
    """Fixed-window limiter backed by Redis INCR.

    Falls back to an in-process limiter whenever Redis fails, so admission
    never raises on a cache outage.
    """

    def __init__(
        self,
        cache: RedisCache,
        window_seconds: int = 60,
        clock: Clock = utc_now,
        fallback: Optional[SlidingWindowRateLimiter] = None,
    ) -> None:
        self._cache = cache
        self._window_seconds = window_seconds
        self._clock = clock
        self._fallback = fallback or SlidingWindowRateLimiter(window_seconds, clock)

    def _window_key(self, key: str) -> str:
        index = int(_seconds(self._clock()) // self._window_seconds)
        return rate_window_key(key, index)

    async def acquire(self, key: str, limit: int) -> bool:
        if not self._cache.available:
            return await self._fallback.acquire(key, limit)
        try:
            count = await self._cache.increment_window(self._window_key(key), ttl=self._window_seconds * 2)
        except RedisError as e:
            logger.warning("Redis rate counter failed, using local window", provider_id=key, error=str(e))
            return await self._fallback.acquire(key, limit)
        return count <= limit

    async def remaining(self, key: str, limit: int) -> int:
        if not self._cache.available:
            return await self._fallback.remaining(key, limit)
        try:
            count = await self._cache.read_counter(self._window_key(key))
        except RedisError as e:
            logger.warning("Redis rate counter read failed, using local window", provider_id=key, error=str(e))
            return await self._fallback.remaining(key, limit)
        return max(limit - count, 0)
