"""Request registry — durable store of compliance requests.

Every status change is a single conditional UPDATE … WHERE status = :expected
RETURNING *, so two concurrent callers racing on the same request cannot both
win: the loser's UPDATE matches zero rows and gets None back. There is no
read-then-write anywhere in this module.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.compliance.errors import NotFoundOrExpired
from src.models.compliance_request import ComplianceRequest
from src.models.enums import RequestStatus, RequestType
from src.schemas.compliance import Provenance, RequestOptions

logger = logging.getLogger(__name__)

# Past verification but not yet finished
UNFINISHED_STATUSES = [
    status.value for status in RequestStatus if not status.is_terminal and status is not RequestStatus.PENDING
]


class RequestRegistry:
    """Stateless store operations — AsyncSession passed per call."""

    async def create(
        self,
        db: AsyncSession,
        *,
        subject_id: uuid.UUID,
        request_type: RequestType,
        verification_token: str,
        provenance: Provenance,
        options: RequestOptions,
    ) -> ComplianceRequest:
        """Insert a new PENDING request."""
        request = ComplianceRequest(
            user_id=subject_id,
            request_type=request_type.value,
            status=RequestStatus.PENDING.value,
            verification_token=verification_token,
            ip_address=provenance.ip_address,
            user_agent=provenance.user_agent,
            notes=provenance.notes,
            options=options.model_dump(mode="json", exclude_none=True),
        )
        db.add(request)
        await db.flush()
        return request

    async def list_for_subject(self, db: AsyncSession, subject_id: uuid.UUID) -> list[ComplianceRequest]:
        """All requests of one subject, newest first."""
        result = await db.scalars(
            select(ComplianceRequest)
            .where(ComplianceRequest.user_id == subject_id)
            .order_by(ComplianceRequest.created_at.desc())
        )
        return list(result.all())

    async def get_for_subject(
        self,
        db: AsyncSession,
        request_id: uuid.UUID,
        subject_id: uuid.UUID,
    ) -> ComplianceRequest:
        """Load a request owned by `subject_id`.

        A request that exists but belongs to someone else is reported exactly
        like one that does not exist.
        """
        result = await db.execute(
            select(ComplianceRequest).where(
                ComplianceRequest.id == request_id,
                ComplianceRequest.user_id == subject_id,
            )
        )
        request = result.scalar_one_or_none()
        if request is None:
            raise NotFoundOrExpired("Compliance request not found", request_id=request_id)
        return request

    async def redeem_token(
        self,
        db: AsyncSession,
        token: str,
        *,
        issued_after: datetime,
        now: datetime,
    ) -> ComplianceRequest | None:
        """Move the PENDING request holding `token` to VERIFIED.

        Returns None when no pending, unexpired request matches — whether the
        token never existed, expired, or was already redeemed.
        """
        stmt = (
            update(ComplianceRequest)
            .where(
                ComplianceRequest.verification_token == token,
                ComplianceRequest.status == RequestStatus.PENDING.value,
                ComplianceRequest.created_at > issued_after,
            )
            .values(status=RequestStatus.VERIFIED.value, verified_at=now, updated_at=now)
            .returning(ComplianceRequest)
            .execution_options(populate_existing=True)
        )
        result = await db.scalars(stmt)
        return result.one_or_none()

    async def transition(
        self,
        db: AsyncSession,
        request_id: uuid.UUID,
        *,
        from_status: RequestStatus,
        to_status: RequestStatus,
        now: datetime,
        values: dict[str, Any] | None = None,
    ) -> ComplianceRequest | None:
        """Compare-and-set the status of one request.

        Returns the updated request, or None if its status was no longer
        `from_status` (someone else already moved it).
        """
        stmt = (
            update(ComplianceRequest)
            .where(
                ComplianceRequest.id == request_id,
                ComplianceRequest.status == from_status.value,
            )
            .values(status=to_status.value, updated_at=now, **(values or {}))
            .returning(ComplianceRequest)
            .execution_options(populate_existing=True)
        )
        result = await db.scalars(stmt)
        request = result.one_or_none()
        if request is None:
            logger.info(
                "Transition %s→%s skipped for request %s (status changed concurrently)",
                from_status.value,
                to_status.value,
                request_id,
            )
        return request

    async def fail_unfinished(
        self,
        db: AsyncSession,
        request_id: uuid.UUID,
        *,
        now: datetime,
    ) -> ComplianceRequest | None:
        """Move a verified or in-flight request to FAILED.

        Used after a unit of work was rolled back, when the stored status may
        be either one. PENDING requests and finished ones are left alone.
        """
        stmt = (
            update(ComplianceRequest)
            .where(
                ComplianceRequest.id == request_id,
                ComplianceRequest.status.in_(UNFINISHED_STATUSES),
            )
            .values(status=RequestStatus.FAILED.value, processed_at=now, updated_at=now)
            .returning(ComplianceRequest)
            .execution_options(populate_existing=True)
        )
        result = await db.scalars(stmt)
        return result.one_or_none()

    async def schedule_deletion(
        self,
        db: AsyncSession,
        request_id: uuid.UUID,
        *,
        when: datetime,
        now: datetime,
    ) -> ComplianceRequest | None:
        """Set the anonymization time of a PROCESSING deletion request."""
        stmt = (
            update(ComplianceRequest)
            .where(
                ComplianceRequest.id == request_id,
                ComplianceRequest.request_type == RequestType.DATA_DELETION.value,
                ComplianceRequest.status == RequestStatus.PROCESSING.value,
                ComplianceRequest.executed_at.is_(None),
            )
            .values(deletion_scheduled_at=when, updated_at=now)
            .returning(ComplianceRequest)
            .execution_options(populate_existing=True)
        )
        result = await db.scalars(stmt)
        return result.one_or_none()

    async def cancel_deletions(
        self,
        db: AsyncSession,
        subject_id: uuid.UUID,
        *,
        reason: str,
        now: datetime,
    ) -> list[ComplianceRequest]:
        """Withdraw every scheduled deletion of a subject that has not started.

        Matching requests are closed as COMPLETED with the cancellation
        recorded; a request whose execution has been claimed is untouched.
        """
        stmt = (
            update(ComplianceRequest)
            .where(
                ComplianceRequest.user_id == subject_id,
                ComplianceRequest.request_type == RequestType.DATA_DELETION.value,
                ComplianceRequest.status == RequestStatus.PROCESSING.value,
                ComplianceRequest.deletion_scheduled_at.is_not(None),
                ComplianceRequest.executed_at.is_(None),
            )
            .values(
                status=RequestStatus.COMPLETED.value,
                deletion_scheduled_at=None,
                cancelled_at=now,
                cancellation_reason=reason,
                processed_at=now,
                updated_at=now,
            )
            .returning(ComplianceRequest)
            .execution_options(populate_existing=True)
        )
        result = await db.scalars(stmt)
        return list(result.all())

    async def list_due_deletions(
        self,
        db: AsyncSession,
        now: datetime,
        limit: int | None = None,
    ) -> list[tuple[uuid.UUID, uuid.UUID]]:
        """Return (request_id, subject_id) of deletions due at `now`, oldest first."""
        stmt = (
            select(ComplianceRequest.id, ComplianceRequest.user_id)
            .where(
                ComplianceRequest.request_type == RequestType.DATA_DELETION.value,
                ComplianceRequest.status == RequestStatus.PROCESSING.value,
                ComplianceRequest.deletion_scheduled_at.is_not(None),
                ComplianceRequest.deletion_scheduled_at <= now,
                ComplianceRequest.executed_at.is_(None),
            )
            .order_by(ComplianceRequest.deletion_scheduled_at.asc())
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await db.execute(stmt)
        return [(row[0], row[1]) for row in result.all()]

    async def claim_due_deletion(
        self,
        db: AsyncSession,
        request_id: uuid.UUID,
        *,
        now: datetime,
    ) -> ComplianceRequest | None:
        """Mark a due deletion as executing, unless it was cancelled or claimed.

        The row stays locked until the caller's transaction ends, so a
        concurrent cancel either happens before this claim or not at all.
        """
        stmt = (
            update(ComplianceRequest)
            .where(
                ComplianceRequest.id == request_id,
                ComplianceRequest.status == RequestStatus.PROCESSING.value,
                ComplianceRequest.deletion_scheduled_at.is_not(None),
                ComplianceRequest.deletion_scheduled_at <= now,
                ComplianceRequest.executed_at.is_(None),
            )
            .values(executed_at=now, updated_at=now)
            .returning(ComplianceRequest)
            .execution_options(populate_existing=True)
        )
        result = await db.scalars(stmt)
        return result.one_or_none()


# Module-level singleton
request_registry = RequestRegistry()
