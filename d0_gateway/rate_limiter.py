"""
Fixed-window rate limiting for payment endpoints

The in-memory limiter only protects a single process and resets on restart.
Scaled deployments use the Redis limiter so every instance shares one counter.
"""
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

import redis.asyncio as aioredis

from core.config import get_settings
from core.logging import get_logger


@dataclass
class RateLimitDecision:
    """Outcome of a single rate limit check"""

    allowed: bool
    limit: int
    remaining: int
    retry_after: int = 0

    def headers(self) -> Dict[str, str]:
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
        }
        if not self.allowed:
            headers["Retry-After"] = str(self.retry_after)
        return headers


class RateLimiter(ABC):
    """Per-client fixed-window limiter"""

    def __init__(self, limit: int, window_seconds: int):
        self.limit = limit
        self.window_seconds = window_seconds
        self.logger = get_logger(f"rate_limiter.{self.backend}", domain="d0")

    backend = "base"

    @abstractmethod
    async def hit(self, client_id: str) -> RateLimitDecision:
        """Count one request for the client and decide whether it may proceed"""

    async def close(self) -> None:
        return None


class InMemoryRateLimiter(RateLimiter):
    """Process-local counters keyed by client id"""

    backend = "memory"

    def __init__(
        self,
        limit: int,
        window_seconds: int,
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__(limit, window_seconds)
        self._clock = clock
        self._windows: Dict[str, Tuple[int, float]] = {}
        self._lock = threading.Lock()

    async def hit(self, client_id: str) -> RateLimitDecision:
        now = self._clock()
        with self._lock:
            count, reset_at = self._windows.get(client_id, (0, 0.0))
            if now >= reset_at:
                count, reset_at = 0, now + self.window_seconds

            if count >= self.limit:
                retry_after = max(1, int(reset_at - now + 0.999))
                return RateLimitDecision(
                    allowed=False, limit=self.limit, remaining=0, retry_after=retry_after
                )

            count += 1
            self._windows[client_id] = (count, reset_at)
            self._prune(now)

        return RateLimitDecision(
            allowed=True, limit=self.limit, remaining=self.limit - count
        )

    def _prune(self, now: float) -> None:
        # Caller holds the lock
        if len(self._windows) < 10000:
            return
        expired = [key for key, (_, reset_at) in self._windows.items() if reset_at <= now]
        for key in expired:
            del self._windows[key]

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()


class RedisRateLimiter(RateLimiter):
    """Shared counters in Redis using INCR with a window expiry"""

    backend = "redis"

    def __init__(
        self,
        limit: int,
        window_seconds: int,
        redis_url: Optional[str] = None,
        redis_client: Optional[aioredis.Redis] = None,
        key_prefix: str = "rate_limit:checkout",
    ):
        super().__init__(limit, window_seconds)
        self.redis_url = redis_url or get_settings().redis_url
        self.key_prefix = key_prefix
        self._redis = redis_client

    async def _get_redis(self) -> aioredis.Redis:
        if self._redis is None:
            self._redis = aioredis.from_url(self.redis_url, decode_responses=True)
        return self._redis

    async def hit(self, client_id: str) -> RateLimitDecision:
        key = f"{self.key_prefix}:{client_id}"
        try:
            redis = await self._get_redis()
            count = await redis.incr(key)
            if count == 1:
                await redis.expire(key, self.window_seconds)
            ttl = await redis.ttl(key)
        except Exception as e:
            self.logger.error(f"Rate limiter error: {e}")
            # Fail open - allow request if rate limiter fails
            return RateLimitDecision(allowed=True, limit=self.limit, remaining=self.limit)

        if ttl is None or ttl < 0:
            ttl = self.window_seconds

        if count > self.limit:
            return RateLimitDecision(
                allowed=False, limit=self.limit, remaining=0, retry_after=max(1, ttl)
            )
        return RateLimitDecision(
            allowed=True, limit=self.limit, remaining=self.limit - count
        )

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.close()
            self._redis = None


def create_rate_limiter(settings=None) -> RateLimiter:
    """Build the limiter selected by settings"""
    settings = settings or get_settings()
    if settings.rate_limit_backend == "redis":
        return RedisRateLimiter(
            settings.rate_limit_requests,
            settings.rate_limit_window_seconds,
            redis_url=settings.redis_url,
        )
    return InMemoryRateLimiter(
        settings.rate_limit_requests, settings.rate_limit_window_seconds
    )
