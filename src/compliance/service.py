"""Compliance service — the engine's entry points for the web layer and jobs.

Owns transaction boundaries: each public call runs in its own session and
commits at well-defined points. Verification commits the VERIFIED state
before dispatching. If the processing outcome cannot be committed, the
request is closed as FAILED from a fresh session, so the row and its audit
entry agree. Store failures surface as PersistenceError; the raw database
error stays in the logs.

Usage:
    service = build_compliance_service(async_session_factory)
    created = await service.create_request(subject_id, RequestType.DATA_EXPORT, Provenance())
    request = await service.verify(created.verification_token)
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence
from datetime import UTC, datetime

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.compliance.aggregator import DataAggregator, DataSource
from src.compliance.audit import AuditTrail, audit_trail
from src.compliance.consent import ConsentLedger, consent_ledger
from src.compliance.deletion import DeletionBatchResult, DeletionExecutor, DeletionScheduler
from src.compliance.dispatcher import RequestDispatcher
from src.compliance.errors import PersistenceError, ValidationError
from src.compliance.handlers import ComplianceHandlers
from src.compliance.registry import RequestRegistry, request_registry
from src.compliance.sources import default_sources
from src.compliance.storage import ArtifactStorage, LocalArtifactStorage
from src.compliance.verification import VerificationGate
from src.config import ComplianceSettings, settings
from src.events import emit
from src.models.compliance_request import ComplianceRequest
from src.models.enums import AuditAction, RequestStatus, RequestType
from src.schemas.compliance import (
    ConsentStateOut,
    ConsentUpdate,
    CreateRequestOut,
    Provenance,
    RequestOptions,
)
from src.schemas.events import EventType, SystemEvent

logger = logging.getLogger(__name__)


class ComplianceService:
    """Facade over the verification gate, dispatcher, deletion and consent components."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        gate: VerificationGate,
        dispatcher: RequestDispatcher,
        scheduler: DeletionScheduler,
        executor: DeletionExecutor,
        ledger: ConsentLedger = consent_ledger,
        registry: RequestRegistry = request_registry,
        audit: AuditTrail = audit_trail,
    ) -> None:
        self._session_factory = session_factory
        self._gate = gate
        self._dispatcher = dispatcher
        self._scheduler = scheduler
        self._executor = executor
        self._ledger = ledger
        self._registry = registry
        self._audit = audit

    # ── Intake ───────────────────────────────────────────────────────

    async def create_request(
        self,
        subject_id: uuid.UUID,
        request_type: RequestType | str,
        provenance: Provenance,
        options: RequestOptions | dict | None = None,
    ) -> CreateRequestOut:
        """Create a PENDING request and return its id and verification token."""
        try:
            request_type = RequestType(request_type)
        except ValueError:
            raise ValidationError(f"Unknown request type: {request_type!r}", request_type=str(request_type)) from None
        try:
            parsed_options = options if isinstance(options, RequestOptions) else RequestOptions(**(options or {}))
        except PydanticValidationError as exc:
            raise ValidationError(f"Invalid request options: {exc.error_count()} error(s)") from exc

        try:
            async with self._session_factory() as db:
                request = await self._gate.issue_token(db, subject_id, request_type, provenance, parsed_options)
                await db.commit()
        except SQLAlchemyError as exc:
            logger.exception("Failed to create compliance request for user=%s", subject_id)
            raise PersistenceError("Failed to create compliance request") from exc

        await emit(SystemEvent(
            event_type=EventType.REQUEST_CREATED,
            user_id=subject_id,
            request_id=request.id,
            data={"request_type": request_type.value, "verification_token": request.verification_token},
            source_module="compliance.service",
        ))
        return CreateRequestOut(
            request_id=request.id,
            verification_token=request.verification_token,
            request_type=request_type,
            status=request.status,
        )

    # ── Verification + processing ────────────────────────────────────

    async def verify(self, token: str, now: datetime | None = None) -> ComplianceRequest:
        """Redeem a token and process the request synchronously."""
        now = now or datetime.now(UTC)
        try:
            async with self._session_factory() as db:
                request = await self._gate.redeem(db, token, now=now)
                await db.commit()
        except SQLAlchemyError as exc:
            logger.exception("Failed to verify compliance request")
            raise PersistenceError("Failed to verify compliance request") from exc

        await emit(SystemEvent(
            event_type=EventType.REQUEST_VERIFIED,
            user_id=request.user_id,
            request_id=request.id,
            data={"request_type": request.request_type},
            source_module="compliance.service",
        ))
        return await self.process(request, now=now)

    async def process(self, request: ComplianceRequest, now: datetime | None = None) -> ComplianceRequest:
        """Dispatch a VERIFIED request and commit its resulting state."""
        now = now or datetime.now(UTC)
        try:
            async with self._session_factory() as db:
                result = await self._dispatcher.dispatch(db, request, now=now)
                await db.commit()
        except SQLAlchemyError as exc:
            logger.exception("Persistence failure while dispatching request %s", request.id)
            failed = await self._fail_after_rollback(request, now)
            error = PersistenceError("Failed to process compliance request", request_id=request.id)
            if failed is not None:
                # The token is spent; only a new request can succeed
                error.retryable = False
                await self._emit_outcome(failed)
            raise error from exc

        await self._emit_outcome(result)
        return result

    async def _fail_after_rollback(self, request: ComplianceRequest, now: datetime) -> ComplianceRequest | None:
        """Close a request whose processing could not be committed, in a fresh session.

        Best effort: if the store is still down, only the audit entry is
        attempted and None is returned.
        """
        data = {"request_type": request.request_type, "reason": PersistenceError.reason}
        try:
            async with self._session_factory() as db:
                failed = await self._registry.fail_unfinished(db, request.id, now=now)
                await self._audit.record(
                    db,
                    subject_id=request.user_id,
                    action=AuditAction.REQUEST_FAILED,
                    related_record_id=request.id,
                    data=data,
                )
                await db.commit()
        except SQLAlchemyError:
            logger.exception("Could not mark request %s as failed", request.id)
            await self._audit.record_detached(
                self._session_factory,
                subject_id=request.user_id,
                action=AuditAction.REQUEST_FAILED,
                related_record_id=request.id,
                data=data,
            )
            return None
        return failed

    async def _emit_outcome(self, request: ComplianceRequest) -> None:
        if request.status == RequestStatus.COMPLETED.value:
            event_type = EventType.EXPORT_READY if request.export_url else EventType.REQUEST_COMPLETED
        elif request.status == RequestStatus.FAILED.value:
            event_type = EventType.REQUEST_FAILED
        elif request.deletion_scheduled_at is not None:
            event_type = EventType.DELETION_SCHEDULED
        else:
            return
        await emit(SystemEvent(
            event_type=event_type,
            user_id=request.user_id,
            request_id=request.id,
            data={
                "request_type": request.request_type,
                "export_url": request.export_url,
                "deletion_scheduled_at": (
                    request.deletion_scheduled_at.isoformat() if request.deletion_scheduled_at else None
                ),
            },
            source_module="compliance.service",
        ))

    # ── Status ───────────────────────────────────────────────────────

    async def get_status(self, request_id: uuid.UUID, subject_id: uuid.UUID) -> ComplianceRequest:
        """Return a request, scoped to its owner."""
        try:
            async with self._session_factory() as db:
                return await self._registry.get_for_subject(db, request_id, subject_id)
        except SQLAlchemyError as exc:
            logger.exception("Failed to load compliance request %s", request_id)
            raise PersistenceError("Failed to load compliance request") from exc

    async def list_requests(self, subject_id: uuid.UUID) -> list[ComplianceRequest]:
        """Every request of a subject, newest first."""
        try:
            async with self._session_factory() as db:
                return await self._registry.list_for_subject(db, subject_id)
        except SQLAlchemyError as exc:
            logger.exception("Failed to list compliance requests for user=%s", subject_id)
            raise PersistenceError("Failed to list compliance requests") from exc

    # ── Consent ──────────────────────────────────────────────────────

    async def update_consent(
        self,
        subject_id: uuid.UUID,
        consents: ConsentUpdate | dict,
        now: datetime | None = None,
    ) -> ConsentStateOut:
        try:
            update = consents if isinstance(consents, ConsentUpdate) else ConsentUpdate(**consents)
        except (PydanticValidationError, TypeError) as exc:
            raise ValidationError("Invalid consent preferences") from exc

        try:
            async with self._session_factory() as db:
                user = await self._ledger.update_consent(db, subject_id, update, now=now)
                await db.commit()
        except SQLAlchemyError as exc:
            logger.exception("Failed to update consent for user=%s", subject_id)
            raise PersistenceError("Failed to update consent") from exc

        state = ConsentStateOut(
            marketing=user.marketing_consent,
            data_processing=user.data_processing_consent,
            consent_timestamp=user.consent_timestamp,
        )
        await emit(SystemEvent(
            event_type=EventType.CONSENT_UPDATED,
            user_id=subject_id,
            data=state.model_dump(mode="json"),
            source_module="compliance.service",
        ))
        return state

    async def get_consent(self, subject_id: uuid.UUID) -> ConsentStateOut:
        try:
            async with self._session_factory() as db:
                return await self._ledger.get_consent(db, subject_id)
        except SQLAlchemyError as exc:
            raise PersistenceError("Failed to load consent") from exc

    # ── Deletion ─────────────────────────────────────────────────────

    async def cancel_deletion(self, subject_id: uuid.UUID, reason: str = "Cancelled by user") -> int:
        """Cancel the subject's pending deletions. Returns how many were cancelled."""
        try:
            async with self._session_factory() as db:
                cancelled = await self._scheduler.cancel(db, subject_id, reason=reason)
                await db.commit()
        except SQLAlchemyError as exc:
            logger.exception("Failed to cancel deletion for user=%s", subject_id)
            raise PersistenceError("Failed to cancel deletion") from exc

        for request in cancelled:
            await emit(SystemEvent(
                event_type=EventType.DELETION_CANCELLED,
                user_id=subject_id,
                request_id=request.id,
                source_module="compliance.service",
            ))
        return len(cancelled)

    async def run_scheduled_deletions(self, now: datetime | None = None) -> DeletionBatchResult:
        """Entry point for the external periodic trigger."""
        return await self._executor.execute_due(now)


def build_compliance_service(
    session_factory: async_sessionmaker[AsyncSession],
    config: ComplianceSettings | None = None,
    *,
    sources: Sequence[DataSource] | None = None,
    storage: ArtifactStorage | None = None,
) -> ComplianceService:
    """Wire the engine's components with their default collaborators."""
    config = config or settings.compliance
    aggregator = DataAggregator(
        sources if sources is not None else default_sources(session_factory, config),
        concurrency=config.aggregation_concurrency,
    )
    scheduler = DeletionScheduler()
    handlers = ComplianceHandlers(
        aggregator=aggregator,
        storage=storage or LocalArtifactStorage(config.export_dir, config.export_url_prefix),
        scheduler=scheduler,
        config=config,
    )
    return ComplianceService(
        session_factory=session_factory,
        gate=VerificationGate(config=config),
        dispatcher=RequestDispatcher(handlers),
        scheduler=scheduler,
        executor=DeletionExecutor(session_factory),
    )


__all__ = ["ComplianceService", "build_compliance_service"]
