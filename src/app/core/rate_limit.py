"""Sliding-window rate limiting backed by Redis sorted sets.

Each conversation gets one sorted set of hit timestamps, keyed under the
owning tenant's prefix. A check trims hits older than the window, records
the new hit, counts and refreshes the TTL in a single MULTI/EXEC pipeline,
so concurrent turns across processes see each other's hits.
"""

from __future__ import annotations

import math
import time
import uuid

import redis.asyncio as aioredis
import structlog
from redis.exceptions import RedisError

from src.app.chat.errors import RateLimitExceededError
from src.app.core.monitoring import rate_limited_total
from src.app.core.redis import tenant_key

logger = structlog.get_logger(__name__)


class SlidingWindowRateLimiter:
    """Per-conversation sliding-window limiter.

    Args:
        redis_client: Async Redis client.
        max_messages: Hits allowed per window.
        window_seconds: Window length in seconds.
    """

    def __init__(
        self,
        redis_client: aioredis.Redis,
        max_messages: int = 100,
        window_seconds: int = 3600,
    ) -> None:
        self._redis = redis_client
        self._max_messages = max_messages
        self._window_seconds = window_seconds

    @staticmethod
    def _key(tenant_id: str, conversation_id: str) -> str:
        return tenant_key(tenant_id, f"ratelimit:conversation:{conversation_id}")

    async def check(self, tenant_id: str, conversation_id: str) -> int:
        """Record one hit for the conversation and enforce the limit.

        Returns:
            Hits remaining in the current window.

        Raises:
            RateLimitExceededError: If the hit would exceed the limit. The
                rejected hit is not counted against later requests.
        """
        key = self._key(tenant_id, conversation_id)
        now = time.time()
        member = f"{now:.6f}:{uuid.uuid4().hex}"

        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.zremrangebyscore(key, 0, now - self._window_seconds)
                pipe.zadd(key, {member: now})
                pipe.zcard(key)
                pipe.expire(key, self._window_seconds)
                _, _, count, _ = await pipe.execute()

            if count > self._max_messages:
                await self._redis.zrem(key, member)
                oldest = await self._redis.zrange(key, 0, 0, withscores=True)
                retry_after = self._window_seconds
                if oldest:
                    retry_after = max(1, math.ceil(oldest[0][1] + self._window_seconds - now))
                logger.warning(
                    "chat.rate_limited",
                    tenant_id=tenant_id,
                    conversation_id=conversation_id,
                    count=count - 1,
                    retry_after=retry_after,
                )
                rate_limited_total.inc()
                raise RateLimitExceededError(retry_after=retry_after)
        except RedisError:
            logger.warning(
                "chat.rate_limit_unavailable",
                tenant_id=tenant_id,
                conversation_id=conversation_id,
                exc_info=True,
            )
            return self._max_messages

        return self._max_messages - count
