"""Shared Redis client and tenant-scoped key names.

Redis holds the per-conversation rate-limit windows and the admin tenant
lookup cache. Rate-limit keys are built with tenant_key() so two tenants can
never share a window, even for colliding conversation IDs.
"""

from __future__ import annotations

import redis.asyncio as aioredis

from src.app.config import get_settings

# Created on first use, closed in the app lifespan

_redis_pool: aioredis.Redis | None = None


def get_redis_pool() -> aioredis.Redis:
    """Return the process-wide Redis client, creating it on first call."""
    global _redis_pool
    if _redis_pool is None:
        settings = get_settings()
        _redis_pool = aioredis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
        )
    return _redis_pool


async def close_redis() -> None:
    """Close the Redis connection pool."""
    global _redis_pool
    if _redis_pool:
        await _redis_pool.aclose()
        _redis_pool = None


def tenant_key(tenant_id: str, key: str) -> str:
    """Generate a tenant-prefixed key: t:{tenant_id}:{key}."""
    if not tenant_id:
        raise ValueError("tenant_id is required for Redis keys")
    return f"t:{tenant_id}:{key}"
