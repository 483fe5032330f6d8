"""Process-wide logging setup shared by the API server and the batch jobs.

stdlib logging carries module loggers; structlog renders structured events
(console in development, JSON lines in production so log shippers can
index subject and request ids).
"""

from __future__ import annotations

import logging
import sys

import structlog

from src.config import settings


def configure_logging(level: str | None = None, *, json_output: bool | None = None) -> None:
    level = level or settings.log_level
    if json_output is None:
        json_output = settings.is_production

    logging.basicConfig(
        level=getattr(logging, level),
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
        stream=sys.stdout,
    )
    renderer = structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
    )
