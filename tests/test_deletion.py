"""Tests for DeletionScheduler and DeletionExecutor — scheduled anonymization."""

from __future__ import annotations

import uuid
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from conftest import NOW, audit_actions, make_db, make_request, make_session_factory, make_user
from sqlalchemy.exc import OperationalError

from src.compliance.deletion import (
    ANONYMIZED_FIRST_NAME,
    ANONYMIZED_LAST_NAME,
    DeletionExecutor,
    DeletionScheduler,
    ExecutionOutcome,
    anonymized_email,
)
from src.compliance.errors import AnonymizationError, NotFoundOrExpired, PersistenceError
from src.models.enums import RequestStatus, RequestType


def _deletion_request(registry, user, status=RequestStatus.PROCESSING.value, scheduled_at=None):
    request = make_request(
        user_id=user.id,
        request_type=RequestType.DATA_DELETION.value,
        status=status,
        deletion_scheduled_at=scheduled_at,
    )
    registry.requests[request.id] = request
    return request


def _executor_db(user, bookings=0):
    db = make_db()
    db.get = AsyncMock(return_value=user)
    db.execute = AsyncMock(return_value=MagicMock(rowcount=bookings))
    return db


# ── DeletionScheduler ────────────────────────────────────────────────


class TestSchedule:
    """Test DeletionScheduler.schedule."""

    @pytest.mark.asyncio()
    async def test_sets_time_and_audits(self, registry, audit):
        user = make_user()
        request = _deletion_request(registry, user)
        when = NOW + timedelta(days=30)

        await DeletionScheduler(registry, audit).schedule(make_db(), request.id, user.id, when, now=NOW)

        assert request.deletion_scheduled_at == when
        assert request.status == RequestStatus.PROCESSING.value
        assert audit_actions(audit) == ["deletion_scheduled"]
        assert audit.record.call_args.kwargs["data"] == {"scheduled_for": when.isoformat()}

    @pytest.mark.asyncio()
    async def test_not_processing_raises(self, registry, audit):
        user = make_user()
        request = _deletion_request(registry, user, status=RequestStatus.VERIFIED.value)

        with pytest.raises(NotFoundOrExpired):
            await DeletionScheduler(registry, audit).schedule(make_db(), request.id, user.id, NOW, now=NOW)
        audit.record.assert_not_awaited()


class TestCancel:
    """Test DeletionScheduler.cancel."""

    @pytest.mark.asyncio()
    async def test_cancels_and_closes_request(self, registry, audit):
        user = make_user()
        request = _deletion_request(registry, user, scheduled_at=NOW + timedelta(hours=1))

        cancelled = await DeletionScheduler(registry, audit).cancel(make_db(), user.id, now=NOW)

        assert cancelled == [request]
        assert request.status == RequestStatus.COMPLETED.value
        assert request.deletion_scheduled_at is None
        assert request.cancelled_at == NOW
        assert request.cancellation_reason == "Cancelled by user"
        assert audit_actions(audit) == ["deletion_cancelled"]

    @pytest.mark.asyncio()
    async def test_nothing_to_cancel_is_not_an_error(self, registry, audit):
        cancelled = await DeletionScheduler(registry, audit).cancel(make_db(), uuid.uuid4(), now=NOW)

        assert cancelled == []
        audit.record.assert_not_awaited()

    @pytest.mark.asyncio()
    async def test_claimed_request_cannot_be_cancelled(self, registry, audit):
        """Once execution has claimed the request, cancel finds nothing."""
        user = make_user()
        request = _deletion_request(registry, user, scheduled_at=NOW - timedelta(hours=1))
        request.executed_at = NOW

        cancelled = await DeletionScheduler(registry, audit).cancel(make_db(), user.id, now=NOW)

        assert cancelled == []
        assert request.status == RequestStatus.PROCESSING.value


# ── DeletionExecutor ─────────────────────────────────────────────────


class TestExecuteDue:
    """Test DeletionExecutor.execute_due — batch anonymization."""

    @pytest.mark.asyncio()
    async def test_anonymizes_due_subject(self, registry, audit):
        """Profile PII is overwritten and exactly one account_anonymized entry written."""
        user = make_user()
        original_id = user.id
        request = _deletion_request(registry, user, scheduled_at=NOW + timedelta(hours=1))
        db = _executor_db(user, bookings=2)
        executor = DeletionExecutor(make_session_factory(db), registry, audit)

        with patch("src.compliance.deletion.emit", new_callable=AsyncMock) as mock_emit:
            result = await executor.execute_due(now=NOW + timedelta(hours=2))

        assert result.processed_count == 1
        assert result.error_count == 0
        assert result.processed_subject_ids == [original_id]
        assert user.id == original_id
        assert user.first_name == ANONYMIZED_FIRST_NAME
        assert user.last_name == ANONYMIZED_LAST_NAME
        assert user.email == anonymized_email(original_id)
        assert user.phone is None
        assert user.password_hash is None
        assert user.password_reset_token is None
        assert user.stripe_customer_id is None
        assert user.is_active is False
        assert user.anonymized_at == NOW + timedelta(hours=2)
        assert audit_actions(audit) == ["account_anonymized"]
        assert audit.record.call_args.kwargs["data"]["bookings_anonymized"] == 2
        assert request.status == RequestStatus.COMPLETED.value
        assert request.executed_at == NOW + timedelta(hours=2)
        event_types = [c.args[0].event_type.value for c in mock_emit.call_args_list]
        assert event_types == ["gdpr.deletion_completed", "gdpr.deletion_batch_finished"]

    @pytest.mark.asyncio()
    async def test_not_yet_due_is_left_alone(self, registry, audit):
        user = make_user()
        _deletion_request(registry, user, scheduled_at=NOW + timedelta(days=1))
        executor = DeletionExecutor(make_session_factory(_executor_db(user)), registry, audit)

        with patch("src.compliance.deletion.emit", new_callable=AsyncMock):
            result = await executor.execute_due(now=NOW)

        assert result.processed_count == 0
        assert user.first_name == "Ada"

    @pytest.mark.asyncio()
    async def test_cancelled_before_due_is_not_anonymized(self, registry, audit):
        """A cancellation inside the grace period must win over a later run."""
        """schedule T+1h → cancel → executeDue(T+2h) leaves the subject intact."""
        user = make_user()
        request = _deletion_request(registry, user)
        scheduler = DeletionScheduler(registry, audit)
        await scheduler.schedule(make_db(), request.id, user.id, NOW + timedelta(hours=1), now=NOW)
        await scheduler.cancel(make_db(), user.id, now=NOW + timedelta(minutes=30))
        executor = DeletionExecutor(make_session_factory(_executor_db(user)), registry, audit)

        with patch("src.compliance.deletion.emit", new_callable=AsyncMock):
            result = await executor.execute_due(now=NOW + timedelta(hours=2))

        assert result.processed_count == 0
        assert user.anonymized_at is None
        assert user.email == "ada@example.com"
        assert "account_anonymized" not in audit_actions(audit)

    @pytest.mark.asyncio()
    async def test_second_run_is_noop(self, registry, audit):
        """Re-running the executor must not anonymize or audit twice."""
        user = make_user()
        _deletion_request(registry, user, scheduled_at=NOW)
        executor = DeletionExecutor(make_session_factory(_executor_db(user)), registry, audit)

        with patch("src.compliance.deletion.emit", new_callable=AsyncMock):
            first = await executor.execute_due(now=NOW + timedelta(hours=1))
            second = await executor.execute_due(now=NOW + timedelta(hours=1))

        assert first.processed_count == 1
        assert second.processed_count == 0
        assert second.error_count == 0
        assert audit_actions(audit) == ["account_anonymized"]

    @pytest.mark.asyncio()
    async def test_already_anonymized_subject_reported_as_skipped(self, registry, audit):
        """A subject anonymized through another request is closed without a second entry."""
        user = make_user(anonymized_at=NOW - timedelta(days=1), email=anonymized_email(uuid.uuid4()))
        request = _deletion_request(registry, user, scheduled_at=NOW)
        executor = DeletionExecutor(make_session_factory(_executor_db(user)), registry, audit)

        with patch("src.compliance.deletion.emit", new_callable=AsyncMock):
            result = await executor.execute_due(now=NOW + timedelta(hours=1))

        assert result.processed_count == 0
        assert result.skipped_count == 1
        assert request.status == RequestStatus.COMPLETED.value
        audit.record.assert_not_awaited()

    @pytest.mark.asyncio()
    async def test_one_failure_does_not_abort_batch(self, registry, audit):
        """One failing subject is counted and the rest of the batch still runs."""
        healthy = make_user()
        broken = make_user()
        _deletion_request(registry, broken, scheduled_at=NOW - timedelta(hours=2))
        _deletion_request(registry, healthy, scheduled_at=NOW - timedelta(hours=1))

        async def _get(model, ident, **kwargs):
            if ident == broken.id:
                raise OperationalError("SELECT users", {}, Exception("lock timeout"))
            return healthy

        db = _executor_db(None)
        db.get = AsyncMock(side_effect=_get)
        executor = DeletionExecutor(make_session_factory(db), registry, audit)

        with patch("src.compliance.deletion.emit", new_callable=AsyncMock):
            result = await executor.execute_due(now=NOW)

        assert result.processed_count == 1
        assert result.error_count == 1
        assert result.failed_subject_ids == [broken.id]
        assert healthy.anonymized_at == NOW
        audit.record_detached.assert_awaited_once()
        assert audit.record_detached.call_args.kwargs["action"].value == "anonymization_failed"

    @pytest.mark.asyncio()
    async def test_missing_subject_fails_request_once(self, registry, audit):
        """A deleted profile closes the request as failed, reported on one run only."""
        missing_id = uuid.uuid4()
        request = _deletion_request(registry, make_user(id=missing_id), scheduled_at=NOW - timedelta(hours=1))
        executor = DeletionExecutor(make_session_factory(_executor_db(None)), registry, audit)

        with patch("src.compliance.deletion.emit", new_callable=AsyncMock):
            first = await executor.execute_due(now=NOW)
            second = await executor.execute_due(now=NOW + timedelta(days=1))

        assert first.error_count == 1
        assert first.failed_subject_ids == [missing_id]
        assert request.status == RequestStatus.FAILED.value
        assert second.error_count == 0
        assert audit_actions(audit) == ["anonymization_failed"]
        assert audit.record.call_args.kwargs["data"]["detail"] == "subject_not_found"
        audit.record_detached.assert_not_awaited()

    @pytest.mark.asyncio()
    async def test_listing_failure_raises_persistence_error(self, audit):
        registry = MagicMock()
        registry.list_due_deletions = AsyncMock(side_effect=OperationalError("SELECT", {}, Exception("down")))
        executor = DeletionExecutor(make_session_factory(make_db()), registry, audit)

        with pytest.raises(PersistenceError):
            await executor.execute_due(now=NOW)


class TestExecuteOne:
    """Test DeletionExecutor.execute_one."""

    @pytest.mark.asyncio()
    async def test_database_error_wrapped(self, registry, audit):
        user = make_user()
        request = _deletion_request(registry, user, scheduled_at=NOW)
        db = _executor_db(user)
        db.execute = AsyncMock(side_effect=OperationalError("UPDATE bookings", {}, Exception("lock timeout")))
        executor = DeletionExecutor(make_session_factory(db), registry, audit)

        with pytest.raises(AnonymizationError) as exc_info:
            await executor.execute_one(request.id, user.id, NOW)

        assert exc_info.value.subject_id == user.id
        assert exc_info.value.reason == "anonymization_failed"

    @pytest.mark.asyncio()
    async def test_unclaimable_request_not_due(self, registry, audit):
        user = make_user()
        executor = DeletionExecutor(make_session_factory(_executor_db(user)), registry, audit)

        outcome = await executor.execute_one(uuid.uuid4(), user.id, NOW)

        assert outcome is ExecutionOutcome.NOT_DUE
        assert user.anonymized_at is None
