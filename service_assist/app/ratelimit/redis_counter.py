"""
Redis-backed window counter.
"""

from typing import Optional

import redis.asyncio as redis

from shared.logging import get_logger
from shared.errors import StoreError
from ..domain.models import WindowCount
from ..persistence.base import WindowCounter


class RedisWindowCounter(WindowCounter):
    """INCR + PEXPIRE in one MULTI/EXEC per request.

    Keys are ``rate_limit:<subject>:<window_start>`` and expire two windows
    after their last hit, so old windows clean themselves up.
    """

    def __init__(self, redis_url: str):
        self.redis_url = redis_url
        self.logger = get_logger("assist.rate_limiter.redis")
        self._redis: Optional[redis.Redis] = None

    async def _get_redis(self) -> redis.Redis:
        """Get Redis connection."""
        if self._redis is None:
            self._redis = redis.from_url(
                self.redis_url,
                socket_connect_timeout=2,
                socket_timeout=2,
            )
        return self._redis

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None

    def _make_key(self, subject_id: str, window_start: int) -> str:
        """Generate rate limit key."""
        return f"rate_limit:{subject_id}:{window_start}"

    async def get_and_increment_window_counter(
        self, subject_id: str, window_start: int, limit: int, window_ms: int
    ) -> WindowCount:
        key = self._make_key(subject_id, window_start)
        try:
            client = await self._get_redis()
            async with client.pipeline(transaction=True) as pipeline:
                pipeline.incr(key)
                pipeline.pexpire(key, window_ms * 2)
                count, _ = await pipeline.execute()
        except redis.RedisError as e:
            raise StoreError("get_and_increment_window_counter", str(e)) from e

        count = int(count)
        return WindowCount(count=count, created=count == 1)

    async def health_check(self) -> bool:
        try:
            client = await self._get_redis()
            return bool(await client.ping())
        except redis.RedisError as e:
            self.logger.error("Redis health check failed", error=str(e))
            return False
