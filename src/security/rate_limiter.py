"""Redis-backed fixed-window throttle for compliance request intake.

A subject may create at most `intake_rate_limit` requests per
`intake_rate_window` seconds. Redis being unavailable never blocks intake.

Usage:
    from src.security.rate_limiter import intake_limiter

    allowed, retry_after = await intake_limiter.check_intake(subject_id)
"""

from __future__ import annotations

import logging
import uuid

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from src.config import ComplianceSettings, settings
from src.db.engine import redis_client

logger = logging.getLogger(__name__)


def intake_key(subject_id: uuid.UUID | str) -> str:
    return f"rate:{subject_id}:gdpr"


class RateLimiter:
    """Fixed-window counter: INCR, EXPIRE on the first hit of a window."""

    def __init__(self, redis: aioredis.Redis, config: ComplianceSettings | None = None) -> None:
        self._redis = redis
        self._config = config or settings.compliance

    async def check(self, key: str, limit: int, window: int) -> tuple[bool, int]:
        """Count one hit on `key`.

        Returns:
            (allowed, retry_after) — retry_after is the seconds left in the
            window when the limit is exceeded, 0 otherwise.
        """
        try:
            count = await self._redis.incr(key)
            if count == 1:
                await self._redis.expire(key, window)

            if count > limit:
                ttl = await self._redis.ttl(key)
                return False, max(ttl, 1)

            return True, 0
        except RedisError:
            logger.exception("Rate limiter Redis error for key %s", key)
            # Fail open
            return True, 0

    async def check_intake(self, subject_id: uuid.UUID | str) -> tuple[bool, int]:
        return await self.check(
            intake_key(subject_id),
            limit=self._config.intake_rate_limit,
            window=self._config.intake_rate_window,
        )


# Module-level singleton
intake_limiter = RateLimiter(redis_client)
