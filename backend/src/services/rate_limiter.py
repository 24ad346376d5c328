import logging
from typing import Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError

from backend.src.core.errors import RateLimitedError

logger = logging.getLogger(__name__)


class RateLimiter:
    """Fixed-window request counter kept in Redis. Disabled when no client is configured."""

    def __init__(self, redis: Optional[Redis], limit: int, window_seconds: int):
        self.redis = redis
        self.limit = limit
        self.window = window_seconds

    async def hit(self, key: str):
        if self.redis is None:
            return
        redis_key = f"ratelimit:{key}"
        try:
            count = await self.redis.incr(redis_key)
            if count == 1:
                await self.redis.expire(redis_key, self.window)
        except RedisError as e:
            # Counting is best-effort, an unreachable Redis does not block visitors
            logger.warning("Rate limiter unavailable: %s", e)
            return

        if count > self.limit:
            logger.info("Rate limit exceeded for %s (%d/%d)", key, count, self.limit)
            raise RateLimitedError(retry_after=self.window, rate_key=key)
