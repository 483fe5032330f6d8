"""Tests for the scheduled deletion job."""

from __future__ import annotations

import uuid
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from conftest import NOW

from src.compliance.deletion import DeletionBatchResult
from src.jobs.scheduled_deletions import main, run_scheduled_deletions
from src.schemas.compliance import DeletionBatchOut


class TestRunScheduledDeletions:
    @pytest.mark.asyncio()
    async def test_returns_batch_summary(self):
        subject_id = uuid.uuid4()
        service = MagicMock()
        service.run_scheduled_deletions = AsyncMock(
            return_value=DeletionBatchResult(
                processed_count=1,
                error_count=1,
                skipped_count=2,
                processed_subject_ids=[subject_id],
                failed_subject_ids=[uuid.uuid4()],
            )
        )

        summary = await run_scheduled_deletions(service, now=NOW)

        service.run_scheduled_deletions.assert_awaited_once_with(NOW)
        assert summary.processed_count == 1
        assert summary.error_count == 1
        assert summary.skipped_count == 2
        assert summary.processed_subject_ids == [subject_id]


class TestMain:
    """Test the job entry point exit code and cleanup."""

    @pytest.mark.asyncio()
    @pytest.mark.parametrize(("error_count", "exit_code"), [(0, 0), (2, 1)])
    async def test_exit_code_reflects_failures(self, error_count, exit_code):
        summary = DeletionBatchOut(
            processed_count=3, error_count=error_count, skipped_count=0, processed_subject_ids=[]
        )
        with (
            patch("src.jobs.scheduled_deletions.run_scheduled_deletions", AsyncMock(return_value=summary)),
            patch("src.jobs.scheduled_deletions.close_db", AsyncMock()) as close_db,
        ):
            assert await main() == exit_code
        close_db.assert_awaited_once()

    @pytest.mark.asyncio()
    async def test_closes_pools_when_run_fails(self):
        with (
            patch(
                "src.jobs.scheduled_deletions.run_scheduled_deletions",
                AsyncMock(side_effect=RuntimeError("boom")),
            ),
            patch("src.jobs.scheduled_deletions.close_db", AsyncMock()) as close_db,
            pytest.raises(RuntimeError),
        ):
            await main()
        close_db.assert_awaited_once()
