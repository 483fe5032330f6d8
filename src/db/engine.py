"""Async database engine, session factory, Redis client and lifecycle.

PostgreSQL through SQLAlchemy 2.0 async + asyncpg. The compliance engine never
uses a request-scoped session: ComplianceService opens its own sessions from
`async_session_factory` so it controls where each unit of work commits.
Redis only backs the intake rate limiter.
"""

from __future__ import annotations

import contextlib
import logging
from collections.abc import AsyncGenerator

import redis.asyncio as aioredis
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from src.config import DatabaseSettings, settings

logger = logging.getLogger(__name__)


def build_engine(db: DatabaseSettings, *, echo: bool = False) -> AsyncEngine:
    return create_async_engine(
        db.database_url,
        echo=echo,
        pool_size=db.pool_size,
        max_overflow=db.max_overflow,
        pool_pre_ping=True,
        pool_recycle=3600,
    )


engine: AsyncEngine = build_engine(settings.db, echo=settings.log_level == "DEBUG")

# expire_on_commit=False: requests are handed back to callers after commit
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

redis_client: aioredis.Redis = aioredis.from_url(
    settings.db.redis_url,
    decode_responses=True,
)


# ── Health ───────────────────────────────────────────────────────────


async def ping() -> dict[str, str]:
    """Probe PostgreSQL and Redis. Values are "ok" or "unavailable"."""
    status = {"postgresql": "ok", "redis": "ok"}
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError):
        logger.exception("PostgreSQL health check failed")
        status["postgresql"] = "unavailable"
    try:
        await redis_client.ping()
    except (RedisError, OSError):
        logger.exception("Redis health check failed")
        status["redis"] = "unavailable"
    return status


# ── Lifespan helpers ─────────────────────────────────────────────────


async def init_db() -> None:
    """Verify connectivity; outside production also create missing tables.

    Production schema changes go through Alembic only.
    """
    async with engine.begin() as conn:
        # Registers every model on Base.metadata
        from src.models import Base

        if not settings.is_production:
            await conn.run_sync(Base.metadata.create_all)
    logger.info("Database ready (create_all=%s)", not settings.is_production)


async def close_db() -> None:
    await engine.dispose()
    await redis_client.aclose()


@contextlib.asynccontextmanager
async def db_lifespan() -> AsyncGenerator[None, None]:
    """Open the pools for the lifetime of the app, close them on exit."""
    await init_db()
    try:
        yield
    finally:
        await close_db()
