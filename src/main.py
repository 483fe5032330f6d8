"""FastAPI application entry point — wires everything together.

Usage:
    python -m src.main

Serves the data subject rights API. Scheduled deletions run out of process
(see src.jobs.scheduled_deletions).
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Response, status

from src.api.routes import router as gdpr_router
from src.config import settings
from src.db.engine import db_lifespan, ping
from src.events import clear_subscribers, emit
from src.logging_config import configure_logging
from src.schemas.events import EventType, SystemEvent

# ── Logging setup ────────────────────────────────────────────────────

configure_logging()
logger = logging.getLogger(__name__)

# ── FastAPI lifespan ─────────────────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application startup and shutdown lifecycle."""
    logger.info("Starting compliance service (env=%s)", settings.environment)

    async with db_lifespan():
        logger.info("Database initialized")
        await emit(SystemEvent(event_type=EventType.SYSTEM_STARTUP, source_module="main"))

        try:
            yield
        finally:
            logger.info("Shutting down compliance service...")
            await emit(SystemEvent(event_type=EventType.SYSTEM_SHUTDOWN, source_module="main"))
            clear_subscribers()

    logger.info("Compliance service shutdown complete")


# ── FastAPI app ──────────────────────────────────────────────────────

app = FastAPI(
    title="Compliance API",
    description="Data subject rights: access, portability, erasure, rectification, consent",
    version="0.1.0",
    lifespan=lifespan,
)
app.include_router(gdpr_router)


@app.get("/health")
async def health_check(response: Response) -> dict[str, str]:
    """Liveness plus backing-store reachability; 503 when PostgreSQL is down.

    A Redis outage only degrades intake throttling, so it does not fail the check.
    """
    backends = await ping()
    if backends["postgresql"] != "ok":
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    overall = "ok" if all(v == "ok" for v in backends.values()) else "degraded"
    return {"status": overall, "environment": settings.environment, **backends}


# ── Entry point ──────────────────────────────────────────────────────

if __name__ == "__main__":
    uvicorn.run(
        "src.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.environment == "development",
        log_level=settings.log_level.lower(),
    )
