"""Deletion scheduling and execution — GDPR Art. 17 by anonymization.

A verified deletion request waits in PROCESSING with `deletion_scheduled_at`
set (the grace period). `DeletionExecutor.execute_due()` is run by an
external periodic trigger and anonymizes every due subject in its own
transaction:

1. claim the request (sets `executed_at`; a cancelled or already-claimed
   request is skipped),
2. overwrite the profile's PII with fixed placeholders, keeping the row id,
3. anonymize bookings where the subject was the attendee,
4. append one `account_anonymized` audit entry,
5. close the request as COMPLETED, then commit.

One subject failing never aborts the batch. A request whose subject row no
longer exists is closed as FAILED, so it is reported once, not on every run.
A subject that already carries the `anonymized_at` marker is not touched
again, so a re-run after a crash is a no-op for everything that committed.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.compliance.audit import AuditTrail, audit_trail
from src.compliance.errors import AnonymizationError, NotFoundOrExpired, PersistenceError
from src.compliance.registry import RequestRegistry, request_registry
from src.events import emit
from src.models.booking import Booking
from src.models.compliance_request import ComplianceRequest
from src.models.enums import AuditAction, RequestStatus
from src.models.user import User
from src.schemas.events import EventType, SystemEvent

logger = logging.getLogger(__name__)

ANONYMIZED_FIRST_NAME = "Deleted"
ANONYMIZED_LAST_NAME = "User"
ANONYMIZED_ATTENDEE_NAME = "Deleted User"


def anonymized_email(subject_id: uuid.UUID) -> str:
    """Placeholder e-mail; unique per subject so the column stays unique."""
    return f"deleted-{subject_id}@anonymized.local"


class ExecutionOutcome(str, Enum):
    ANONYMIZED = "anonymized"
    ALREADY_ANONYMIZED = "already_anonymized"
    NOT_DUE = "not_due"  # cancelled or claimed by another worker meanwhile
    SUBJECT_MISSING = "subject_missing"


@dataclass
class DeletionBatchResult:
    """Summary of one execute_due() run."""

    processed_count: int = 0
    error_count: int = 0
    skipped_count: int = 0
    processed_subject_ids: list[uuid.UUID] = field(default_factory=list)
    failed_subject_ids: list[uuid.UUID] = field(default_factory=list)


class DeletionScheduler:
    """Sets and withdraws the anonymization time of deletion requests."""

    def __init__(
        self,
        registry: RequestRegistry = request_registry,
        audit: AuditTrail = audit_trail,
    ) -> None:
        self._registry = registry
        self._audit = audit

    async def schedule(
        self,
        db: AsyncSession,
        request_id: uuid.UUID,
        subject_id: uuid.UUID,
        when: datetime,
        now: datetime | None = None,
    ) -> ComplianceRequest:
        """Schedule anonymization of `subject_id` at `when`."""
        now = now or datetime.now(UTC)
        request = await self._registry.schedule_deletion(db, request_id, when=when, now=now)
        if request is None:
            raise NotFoundOrExpired("No deletion request awaiting scheduling", request_id=request_id)

        await self._audit.record(
            db,
            subject_id=subject_id,
            action=AuditAction.DELETION_SCHEDULED,
            related_record_id=request_id,
            data={"scheduled_for": when.isoformat()},
        )
        logger.info("Account deletion scheduled: user=%s request=%s at=%s", subject_id, request_id, when)
        return request

    async def cancel(
        self,
        db: AsyncSession,
        subject_id: uuid.UUID,
        *,
        reason: str = "Cancelled by user",
        now: datetime | None = None,
    ) -> list[ComplianceRequest]:
        """Withdraw the subject's scheduled deletions that have not started.

        Once execution has claimed a request it can no longer be cancelled;
        such requests are simply not matched, which is not an error.
        """
        now = now or datetime.now(UTC)
        cancelled = await self._registry.cancel_deletions(db, subject_id, reason=reason, now=now)
        for request in cancelled:
            await self._audit.record(
                db,
                subject_id=subject_id,
                action=AuditAction.DELETION_CANCELLED,
                related_record_id=request.id,
                data={"reason": reason},
            )
        logger.info("Cancelled %d scheduled deletion(s) for user=%s", len(cancelled), subject_id)
        return cancelled


class DeletionExecutor:
    """Runs due anonymizations, one independent transaction per subject."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        registry: RequestRegistry = request_registry,
        audit: AuditTrail = audit_trail,
    ) -> None:
        self._session_factory = session_factory
        self._registry = registry
        self._audit = audit

    async def execute_due(self, now: datetime | None = None, limit: int | None = None) -> DeletionBatchResult:
        """Anonymize every subject whose deletion is due at `now`."""
        now = now or datetime.now(UTC)
        result = DeletionBatchResult()

        try:
            async with self._session_factory() as db:
                due = await self._registry.list_due_deletions(db, now, limit)
        except SQLAlchemyError as exc:
            logger.exception("Could not list due deletions")
            raise PersistenceError("Could not list due deletions") from exc

        for request_id, subject_id in due:
            try:
                outcome = await self.execute_one(request_id, subject_id, now)
            except AnonymizationError as exc:
                result.error_count += 1
                result.failed_subject_ids.append(subject_id)
                logger.error("Anonymization failed: user=%s request=%s: %s", subject_id, request_id, exc)
                await self._audit.record_detached(
                    self._session_factory,
                    subject_id=subject_id,
                    action=AuditAction.ANONYMIZATION_FAILED,
                    related_record_id=request_id,
                    data=exc.audit_data(),
                )
                continue

            match outcome:
                case ExecutionOutcome.ANONYMIZED:
                    result.processed_count += 1
                    result.processed_subject_ids.append(subject_id)
                    await emit(SystemEvent(
                        event_type=EventType.DELETION_COMPLETED,
                        user_id=subject_id,
                        request_id=request_id,
                        source_module="compliance.deletion",
                    ))
                case ExecutionOutcome.ALREADY_ANONYMIZED:
                    result.skipped_count += 1
                case ExecutionOutcome.NOT_DUE:
                    logger.info("Deletion request %s no longer due, skipped", request_id)
                case ExecutionOutcome.SUBJECT_MISSING:
                    result.error_count += 1
                    result.failed_subject_ids.append(subject_id)
                    logger.error("Deletion request %s failed: user %s not found", request_id, subject_id)

        logger.info(
            "Executed %d scheduled deletions with %d errors (%d skipped)",
            result.processed_count,
            result.error_count,
            result.skipped_count,
        )
        await emit(SystemEvent(
            event_type=EventType.DELETION_BATCH_FINISHED,
            data={
                "processed": result.processed_count,
                "errors": result.error_count,
                "skipped": result.skipped_count,
            },
            source_module="compliance.deletion",
        ))
        return result

    async def execute_one(
        self,
        request_id: uuid.UUID,
        subject_id: uuid.UUID,
        now: datetime,
    ) -> ExecutionOutcome:
        """Anonymize one subject and close its request, atomically."""
        try:
            async with self._session_factory() as db, db.begin():
                claimed = await self._registry.claim_due_deletion(db, request_id, now=now)
                if claimed is None:
                    return ExecutionOutcome.NOT_DUE

                user = await db.get(User, subject_id, with_for_update=True)
                if user is None:
                    # Nothing left to anonymize
                    await self._registry.transition(
                        db,
                        request_id,
                        from_status=RequestStatus.PROCESSING,
                        to_status=RequestStatus.FAILED,
                        now=now,
                        values={"processed_at": now},
                    )
                    await self._audit.record(
                        db,
                        subject_id=subject_id,
                        action=AuditAction.ANONYMIZATION_FAILED,
                        related_record_id=request_id,
                        data={"reason": AnonymizationError.reason, "detail": "subject_not_found"},
                    )
                    return ExecutionOutcome.SUBJECT_MISSING

                if user.is_anonymized:
                    outcome = ExecutionOutcome.ALREADY_ANONYMIZED
                    logger.info("User %s already anonymized, closing request %s", subject_id, request_id)
                else:
                    bookings = await self.anonymize(db, user, now)
                    await self._audit.record(
                        db,
                        subject_id=subject_id,
                        action=AuditAction.ACCOUNT_ANONYMIZED,
                        related_record_id=request_id,
                        data={
                            "deletion_type": "anonymization",
                            "bookings_anonymized": bookings,
                            "timestamp": now.isoformat(),
                        },
                    )
                    outcome = ExecutionOutcome.ANONYMIZED

                closed = await self._registry.transition(
                    db,
                    request_id,
                    from_status=RequestStatus.PROCESSING,
                    to_status=RequestStatus.COMPLETED,
                    now=now,
                    values={"processed_at": now},
                )
                if closed is None:
                    raise AnonymizationError(subject_id, "Request left PROCESSING during execution")
                return outcome
        except AnonymizationError:
            raise
        except Exception as exc:
            raise AnonymizationError(subject_id, f"{type(exc).__name__}: {exc}") from exc

    async def anonymize(self, db: AsyncSession, user: User, now: datetime) -> int:
        """Overwrite PII on the profile and attendee bookings. Returns bookings touched."""
        placeholder_email = anonymized_email(user.id)

        user.first_name = ANONYMIZED_FIRST_NAME
        user.last_name = ANONYMIZED_LAST_NAME
        user.email = placeholder_email
        user.phone = None
        user.password_hash = None
        user.email_verification_token = None
        user.password_reset_token = None
        user.stripe_customer_id = None
        user.stripe_subscription_id = None
        user.email_verified = False
        user.is_active = False
        user.marketing_consent = False
        user.anonymized_at = now

        upd_result = await db.execute(
            update(Booking)
            .where(Booking.attendee_id == user.id)
            .values(attendee_email=placeholder_email, attendee_name=ANONYMIZED_ATTENDEE_NAME)
        )
        await db.flush()
        bookings = upd_result.rowcount  # type: ignore[attr-defined]
        logger.info("User %s anonymized (%d bookings)", user.id, bookings)
        return bookings
