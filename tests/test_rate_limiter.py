"""Tests for the Redis intake throttle."""

from __future__ import annotations

import uuid
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from src.config import ComplianceSettings
from src.security.rate_limiter import RateLimiter, intake_key


def _redis(count=1, ttl=3000):
    redis = AsyncMock()
    redis.incr = AsyncMock(return_value=count)
    redis.expire = AsyncMock()
    redis.ttl = AsyncMock(return_value=ttl)
    return redis


class TestRateLimiter:
    @pytest.mark.asyncio()
    async def test_first_hit_starts_window(self):
        redis = _redis(count=1)

        allowed, retry_after = await RateLimiter(redis).check("rate:x:gdpr", limit=5, window=3600)

        assert (allowed, retry_after) == (True, 0)
        redis.expire.assert_awaited_once_with("rate:x:gdpr", 3600)

    @pytest.mark.asyncio()
    async def test_over_limit_blocked_with_retry_after(self):
        redis = _redis(count=6, ttl=1800)

        allowed, retry_after = await RateLimiter(redis).check("rate:x:gdpr", limit=5, window=3600)

        assert allowed is False
        assert retry_after == 1800
        redis.expire.assert_not_awaited()

    @pytest.mark.asyncio()
    async def test_redis_down_fails_open(self):
        redis = _redis()
        redis.incr = AsyncMock(side_effect=RedisConnectionError("refused"))

        assert await RateLimiter(redis).check("k", limit=1, window=60) == (True, 0)

    @pytest.mark.asyncio()
    async def test_check_intake_uses_configured_limits(self):
        redis = _redis(count=3)
        subject_id = uuid.uuid4()
        limiter = RateLimiter(redis, ComplianceSettings(intake_rate_limit=2, intake_rate_window=600))

        allowed, _ = await limiter.check_intake(subject_id)

        assert allowed is False
        redis.incr.assert_awaited_once_with(intake_key(subject_id))
        assert intake_key(subject_id) == f"rate:{subject_id}:gdpr"
