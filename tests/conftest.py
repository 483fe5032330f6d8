"""Shared fixtures: mock sessions and an in-memory request registry."""

from __future__ import annotations

import uuid
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.events import clear_subscribers
from src.models.compliance_request import ComplianceRequest
from src.models.enums import RequestStatus, RequestType
from src.models.user import User

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


@asynccontextmanager
async def _noop_transaction():
    yield


def make_db() -> AsyncMock:
    """Mock AsyncSession whose begin()/begin_nested() work with `async with`."""
    db = AsyncMock()
    db.add = MagicMock()
    db.flush = AsyncMock()
    db.commit = AsyncMock()
    db.begin = MagicMock(side_effect=lambda: _noop_transaction())
    db.begin_nested = MagicMock(side_effect=lambda: _noop_transaction())
    return db


def make_session_factory(db: AsyncMock) -> MagicMock:
    """Mock async_sessionmaker that always hands out `db`."""

    @asynccontextmanager
    async def _session():
        yield db

    return MagicMock(side_effect=lambda: _session())


def make_user(**overrides: Any) -> User:
    values: dict[str, Any] = {
        "id": uuid.uuid4(),
        "first_name": "Ada",
        "last_name": "Lovelace",
        "email": "ada@example.com",
        "phone": "+441234567890",
        "timezone": "Europe/London",
        "password_hash": "$2b$12$hash",
        "email_verified": True,
        "email_verification_token": None,
        "password_reset_token": "reset-123",
        "stripe_customer_id": "cus_123",
        "stripe_subscription_id": "sub_123",
        "marketing_consent": False,
        "data_processing_consent": True,
        "consent_timestamp": None,
        "is_active": True,
        "processing_restricted": False,
        "anonymized_at": None,
    }
    values.update(overrides)
    return User(**values)


def make_request(**overrides: Any) -> ComplianceRequest:
    values: dict[str, Any] = {
        "id": uuid.uuid4(),
        "user_id": uuid.uuid4(),
        "request_type": RequestType.DATA_EXPORT.value,
        "status": RequestStatus.VERIFIED.value,
        "verification_token": "a" * 64,
        "options": {},
        "created_at": NOW,
        "updated_at": NOW,
    }
    values.update(overrides)
    return ComplianceRequest(**values)


class InMemoryRegistry:
    """RequestRegistry with the same compare-and-set semantics, kept in a dict."""

    def __init__(self) -> None:
        self.requests: dict[uuid.UUID, ComplianceRequest] = {}
        self.status_history: dict[uuid.UUID, list[str]] = {}

    def _set_status(self, request: ComplianceRequest, status: str) -> None:
        request.status = status
        self.status_history.setdefault(request.id, []).append(status)

    async def create(self, db, *, subject_id, request_type, verification_token, provenance, options):
        request = make_request(
            user_id=subject_id,
            request_type=request_type.value,
            status=RequestStatus.PENDING.value,
            verification_token=verification_token,
            ip_address=provenance.ip_address,
            user_agent=provenance.user_agent,
            options=options.model_dump(mode="json", exclude_none=True),
        )
        self.requests[request.id] = request
        self.status_history[request.id] = [RequestStatus.PENDING.value]
        return request

    async def get_for_subject(self, db, request_id, subject_id):
        from src.compliance.errors import NotFoundOrExpired

        request = self.requests.get(request_id)
        if request is None or request.user_id != subject_id:
            raise NotFoundOrExpired("Compliance request not found")
        return request

    async def list_for_subject(self, db, subject_id):
        owned = [r for r in self.requests.values() if r.user_id == subject_id]
        return sorted(owned, key=lambda r: r.created_at, reverse=True)

    async def fail_unfinished(self, db, request_id, *, now):
        request = self.requests.get(request_id)
        if request is None or request.status not in (RequestStatus.VERIFIED.value, RequestStatus.PROCESSING.value):
            return None
        self._set_status(request, RequestStatus.FAILED.value)
        request.processed_at = now
        return request

    async def redeem_token(self, db, token, *, issued_after, now):
        for request in self.requests.values():
            if (
                request.verification_token == token
                and request.status == RequestStatus.PENDING.value
                and request.created_at > issued_after
            ):
                self._set_status(request, RequestStatus.VERIFIED.value)
                request.verified_at = now
                return request
        return None

    async def transition(self, db, request_id, *, from_status, to_status, now, values=None):
        request = self.requests.get(request_id)
        if request is None or request.status != from_status.value:
            return None
        self._set_status(request, to_status.value)
        for key, value in (values or {}).items():
            setattr(request, key, value)
        return request

    async def schedule_deletion(self, db, request_id, *, when, now):
        request = self.requests.get(request_id)
        if (
            request is None
            or request.request_type != RequestType.DATA_DELETION.value
            or request.status != RequestStatus.PROCESSING.value
            or request.executed_at is not None
        ):
            return None
        request.deletion_scheduled_at = when
        return request

    async def cancel_deletions(self, db, subject_id, *, reason, now):
        cancelled = []
        for request in self.requests.values():
            if (
                request.user_id == subject_id
                and request.request_type == RequestType.DATA_DELETION.value
                and request.status == RequestStatus.PROCESSING.value
                and request.deletion_scheduled_at is not None
                and request.executed_at is None
            ):
                self._set_status(request, RequestStatus.COMPLETED.value)
                request.deletion_scheduled_at = None
                request.cancelled_at = now
                request.cancellation_reason = reason
                request.processed_at = now
                cancelled.append(request)
        return cancelled

    async def list_due_deletions(self, db, now, limit=None):
        due = [
            request
            for request in self.requests.values()
            if request.request_type == RequestType.DATA_DELETION.value
            and request.status == RequestStatus.PROCESSING.value
            and request.deletion_scheduled_at is not None
            and request.deletion_scheduled_at <= now
            and request.executed_at is None
        ]
        due.sort(key=lambda r: r.deletion_scheduled_at)
        return [(r.id, r.user_id) for r in due[:limit]]

    async def claim_due_deletion(self, db, request_id, *, now):
        request = self.requests.get(request_id)
        if (
            request is None
            or request.status != RequestStatus.PROCESSING.value
            or request.deletion_scheduled_at is None
            or request.deletion_scheduled_at > now
            or request.executed_at is not None
        ):
            return None
        request.executed_at = now
        return request


@pytest.fixture
def registry() -> InMemoryRegistry:
    return InMemoryRegistry()


@pytest.fixture
def audit() -> MagicMock:
    """Mock AuditTrail recording every call."""
    trail = MagicMock()
    trail.record = AsyncMock()
    trail.record_detached = AsyncMock(return_value=True)
    return trail


@pytest.fixture(autouse=True)
def _reset_event_subscribers():
    yield
    clear_subscribers()


def audit_actions(audit_mock: MagicMock) -> list[str]:
    """Action values passed to audit.record, in call order."""
    return [c.kwargs["action"].value for c in audit_mock.record.call_args_list]
