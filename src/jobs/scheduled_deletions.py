"""Periodic job — anonymize accounts whose deletion grace period has ended.

Meant to be run by an external scheduler (cron, k8s CronJob):
    python -m src.jobs.scheduled_deletions
"""

from __future__ import annotations

import asyncio
import logging
import sys
from datetime import datetime

import structlog

from src.compliance.service import ComplianceService, build_compliance_service
from src.db.engine import async_session_factory, close_db
from src.logging_config import configure_logging
from src.schemas.compliance import DeletionBatchOut

logger = logging.getLogger(__name__)
log = structlog.get_logger(__name__)


async def run_scheduled_deletions(
    service: ComplianceService | None = None,
    now: datetime | None = None,
) -> DeletionBatchOut:
    """Execute every due deletion and return the batch summary."""
    service = service or build_compliance_service(async_session_factory)
    result = await service.run_scheduled_deletions(now)
    if result.error_count:
        logger.warning(
            "Scheduled deletions finished with %d failure(s): %s",
            result.error_count,
            [str(subject_id) for subject_id in result.failed_subject_ids],
        )
    return DeletionBatchOut(
        processed_count=result.processed_count,
        error_count=result.error_count,
        skipped_count=result.skipped_count,
        processed_subject_ids=result.processed_subject_ids,
    )


async def main() -> int:
    try:
        summary = await run_scheduled_deletions()
    finally:
        await close_db()
    log.info(
        "scheduled_deletion_run",
        processed=summary.processed_count,
        errors=summary.error_count,
        skipped=summary.skipped_count,
        subjects=[str(subject_id) for subject_id in summary.processed_subject_ids],
    )
    return 1 if summary.error_count else 0


if __name__ == "__main__":
    configure_logging("INFO")
    sys.exit(asyncio.run(main()))
