"""Processing routines for each data subject right."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from src.compliance.aggregator import DataAggregator
from src.compliance.audit import AuditTrail, audit_trail
from src.compliance.consent import ConsentLedger, consent_ledger
from src.compliance.deletion import DeletionScheduler
from src.compliance.dispatcher import HandlerOutcome, HandlerResult
from src.compliance.errors import NotFoundOrExpired
from src.compliance.serializer import ExportSerializer, export_serializer, parse_format
from src.compliance.storage import ArtifactStorage
from src.config import ComplianceSettings
from src.models.compliance_request import ComplianceRequest
from src.models.enums import AuditAction, ExportFormat
from src.models.user import User
from src.schemas.compliance import RECTIFIABLE_FIELDS, ConsentUpdate

logger = logging.getLogger(__name__)


class ComplianceHandlers:
    """Implements RequestHandlers on top of the engine's components."""

    def __init__(
        self,
        aggregator: DataAggregator,
        storage: ArtifactStorage,
        scheduler: DeletionScheduler,
        config: ComplianceSettings,
        serializer: ExportSerializer = export_serializer,
        ledger: ConsentLedger = consent_ledger,
        audit: AuditTrail = audit_trail,
    ) -> None:
        self._aggregator = aggregator
        self._storage = storage
        self._scheduler = scheduler
        self._config = config
        self._serializer = serializer
        self._ledger = ledger
        self._audit = audit

    async def _load_subject(self, db: AsyncSession, request: ComplianceRequest) -> User:
        user = await db.get(User, request.user_id)
        if user is None or user.is_anonymized:
            raise NotFoundOrExpired("Subject not found", subject_id=request.user_id)
        return user

    # ── Access / portability ─────────────────────────────────────────

    async def export(self, db: AsyncSession, request: ComplianceRequest, now: datetime) -> HandlerResult:
        """Aggregate, render and store the subject's data."""
        options = request.options or {}
        export_format = parse_format(options.get("export_format", ExportFormat.JSON.value))

        document = await self._aggregator.collect(request.user_id, now)
        artifact = self._serializer.serialize(document, export_format)
        export_url = await self._storage.store(request.id, artifact)

        size_bytes = len(artifact.content.encode("utf-8"))
        await self._audit.record(
            db,
            subject_id=request.user_id,
            action=AuditAction.DATA_EXPORTED,
            related_record_id=request.id,
            data={
                "format": export_format.value,
                "data_categories": list(document.sections),
                "size_bytes": size_bytes,
            },
        )
        return HandlerResult(
            values={
                "export_url": export_url,
                "export_format": export_format.value,
                "expires_at": now + timedelta(days=self._config.export_ttl_days),
            },
            audit_data={"format": export_format.value},
        )

    # ── Erasure ──────────────────────────────────────────────────────

    async def delete(self, db: AsyncSession, request: ComplianceRequest, now: datetime) -> HandlerResult:
        """Schedule anonymization after the grace period."""
        await self._load_subject(db, request)
        when = now + timedelta(days=self._config.deletion_grace_days)
        await self._scheduler.schedule(db, request.id, request.user_id, when, now=now)
        return HandlerResult(outcome=HandlerOutcome.DEFERRED)

    # ── Rectification ────────────────────────────────────────────────

    async def rectify(self, db: AsyncSession, request: ComplianceRequest, now: datetime) -> HandlerResult:
        """Apply requested profile corrections, or flag the request for manual review."""
        user = await self._load_subject(db, request)
        rectifications = (request.options or {}).get("rectifications") or {}
        changes = {k: v for k, v in rectifications.items() if k in RECTIFIABLE_FIELDS}

        for field_name, value in changes.items():
            setattr(user, field_name, value)
        await db.flush()

        manual_review = not changes
        await self._audit.record(
            db,
            subject_id=request.user_id,
            action=AuditAction.DATA_RECTIFIED,
            related_record_id=request.id,
            data={"fields": sorted(changes), "manual_review_required": manual_review},
        )
        if manual_review:
            logger.info("Rectification request %s requires manual review", request.id)
        return HandlerResult(audit_data={"fields": sorted(changes)})

    # ── Consent withdrawal ───────────────────────────────────────────

    async def withdraw_consent(
        self, db: AsyncSession, request: ComplianceRequest, now: datetime
    ) -> HandlerResult:
        """Withdraw marketing consent; data processing consent is needed to keep the service."""
        await self._ledger.update_consent(
            db,
            request.user_id,
            ConsentUpdate(marketing=False),
            method="consent_withdrawal",
            now=now,
        )
        return HandlerResult()

    # ── Restriction ──────────────────────────────────────────────────

    async def restrict_processing(
        self, db: AsyncSession, request: ComplianceRequest, now: datetime
    ) -> HandlerResult:
        user = await self._load_subject(db, request)
        user.processing_restricted = True
        user.is_active = False
        await db.flush()

        await self._audit.record(
            db,
            subject_id=request.user_id,
            action=AuditAction.PROCESSING_RESTRICTED,
            related_record_id=request.id,
            data={"restricted_at": now.isoformat()},
        )
        logger.info("Processing restriction applied for user %s", request.user_id)
        return HandlerResult()
