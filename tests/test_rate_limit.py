"""Tests for the Redis sliding-window rate limiter (mocked Redis pipeline)."""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from src.app.chat.errors import RateLimitExceededError
from src.app.core import rate_limit as rate_limit_module
from src.app.core.rate_limit import SlidingWindowRateLimiter

NOW = 1_000_000.0
KEY = "t:tenant-a:ratelimit:conversation:conv-1"


def _redis(count: int, oldest: list | None = None):
    """Redis double whose MULTI pipeline reports ``count`` hits in the window."""
    pipe = MagicMock()
    pipe.__aenter__.return_value = pipe
    pipe.__aexit__.return_value = False
    pipe.execute = AsyncMock(return_value=[0, 1, count, True])

    client = MagicMock()
    client.pipeline.return_value = pipe
    client.zrem = AsyncMock(return_value=1)
    client.zrange = AsyncMock(return_value=oldest or [])
    return client, pipe


@pytest.fixture(autouse=True)
def frozen_time():
    with patch.object(rate_limit_module, "time", SimpleNamespace(time=lambda: NOW)):
        yield


def _limiter(client) -> SlidingWindowRateLimiter:
    return SlidingWindowRateLimiter(client, max_messages=3, window_seconds=60)


@pytest.mark.parametrize("count, remaining", [(1, 2), (2, 1), (3, 0)])
async def test_returns_remaining_hits(count, remaining):
    client, _ = _redis(count)

    assert await _limiter(client).check("tenant-a", "conv-1") == remaining
    client.zrem.assert_not_awaited()


async def test_window_maintained_in_one_transaction():
    client, pipe = _redis(1)

    await _limiter(client).check("tenant-a", "conv-1")

    client.pipeline.assert_called_once_with(transaction=True)
    pipe.zremrangebyscore.assert_called_once_with(KEY, 0, NOW - 60)
    member_map = pipe.zadd.call_args.args[1]
    assert list(member_map.values()) == [NOW]
    pipe.zcard.assert_called_once_with(KEY)
    pipe.expire.assert_called_once_with(KEY, 60)


async def test_members_are_unique_per_hit():
    client, pipe = _redis(1)
    limiter = _limiter(client)

    await limiter.check("tenant-a", "conv-1")
    await limiter.check("tenant-a", "conv-1")

    first, second = (c.args[1] for c in pipe.zadd.call_args_list)
    assert first.keys() != second.keys()


async def test_over_limit_raises_with_retry_after():
    # Oldest hit was 30s ago in a 60s window
    client, _ = _redis(4, oldest=[("hit", NOW - 30)])

    with pytest.raises(RateLimitExceededError) as exc_info:
        await _limiter(client).check("tenant-a", "conv-1")

    assert exc_info.value.retry_after == 30
    assert exc_info.value.status_code == 429


async def test_rejected_hit_is_removed():
    client, pipe = _redis(4, oldest=[("hit", NOW - 59.5)])

    with pytest.raises(RateLimitExceededError) as exc_info:
        await _limiter(client).check("tenant-a", "conv-1")

    member = next(iter(pipe.zadd.call_args.args[1]))
    client.zrem.assert_awaited_once_with(KEY, member)
    # Never advertises less than one second
    assert exc_info.value.retry_after == 1


async def test_retry_after_defaults_to_window():
    client, _ = _redis(4, oldest=[])

    with pytest.raises(RateLimitExceededError) as exc_info:
        await _limiter(client).check("tenant-a", "conv-1")

    assert exc_info.value.retry_after == 60


async def test_keys_are_scoped_by_tenant_and_conversation():
    client, pipe = _redis(1)
    limiter = _limiter(client)

    await limiter.check("tenant-b", "conv-1")
    await limiter.check("tenant-a", "conv-2")

    keys = [c.args[0] for c in pipe.zcard.call_args_list]
    assert keys == [
        "t:tenant-b:ratelimit:conversation:conv-1",
        "t:tenant-a:ratelimit:conversation:conv-2",
    ]


async def test_redis_failure_fails_open():
    client = MagicMock()
    client.pipeline.side_effect = RedisConnectionError("connection refused")

    assert await _limiter(client).check("tenant-a", "conv-1") == 3


async def test_redis_failure_during_execute_fails_open():
    client, pipe = _redis(1)
    pipe.execute.side_effect = RedisConnectionError("connection reset")

    assert await _limiter(client).check("tenant-a", "conv-1") == 3
