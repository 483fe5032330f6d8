"""Verification gate — issues and redeems single-use request tokens.

A request is only processed once the subject proves control of the channel
the token was sent to. Redemption is a compare-and-set on the PENDING status,
so of two simultaneous redemptions of one token exactly one succeeds.
"""

from __future__ import annotations

import logging
import secrets
import uuid
from datetime import UTC, datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from src.compliance.audit import AuditTrail, audit_trail
from src.compliance.errors import NotFoundOrExpired
from src.compliance.registry import RequestRegistry, request_registry
from src.config import ComplianceSettings, settings
from src.models.compliance_request import ComplianceRequest
from src.models.enums import AuditAction, RequestType
from src.schemas.compliance import Provenance, RequestOptions

logger = logging.getLogger(__name__)


class VerificationGate:
    """Creates PENDING requests and advances them to VERIFIED."""

    def __init__(
        self,
        registry: RequestRegistry = request_registry,
        audit: AuditTrail = audit_trail,
        config: ComplianceSettings | None = None,
    ) -> None:
        self._registry = registry
        self._audit = audit
        self._config = config or settings.compliance

    def generate_token(self) -> str:
        """Cryptographically random hex token."""
        return secrets.token_hex(self._config.verification_token_bytes)

    async def issue_token(
        self,
        db: AsyncSession,
        subject_id: uuid.UUID,
        request_type: RequestType,
        provenance: Provenance,
        options: RequestOptions | None = None,
    ) -> ComplianceRequest:
        """Persist a new PENDING request with a fresh token and audit it."""
        request = await self._registry.create(
            db,
            subject_id=subject_id,
            request_type=request_type,
            verification_token=self.generate_token(),
            provenance=provenance,
            options=options or RequestOptions(),
        )
        await self._audit.record(
            db,
            subject_id=subject_id,
            action=AuditAction.REQUEST_CREATED,
            related_record_id=request.id,
            data={
                "request_type": request_type.value,
                "ip_address": provenance.ip_address,
                "user_agent": provenance.user_agent,
            },
        )
        logger.info("Compliance request created: user=%s type=%s id=%s", subject_id, request_type.value, request.id)
        return request

    async def redeem(
        self,
        db: AsyncSession,
        token: str,
        now: datetime | None = None,
    ) -> ComplianceRequest:
        """Redeem `token`, moving its request from PENDING to VERIFIED.

        Raises NotFoundOrExpired for unknown, expired and already-used tokens
        alike, so a losing concurrent redemption cannot tell them apart.
        """
        if not token:
            raise NotFoundOrExpired("Invalid or expired verification token")

        now = now or datetime.now(UTC)
        issued_after = now - timedelta(hours=self._config.verification_ttl_hours)
        request = await self._registry.redeem_token(db, token, issued_after=issued_after, now=now)
        if request is None:
            logger.info("Verification token rejected (unknown, expired or already used)")
            raise NotFoundOrExpired("Invalid or expired verification token")

        await self._audit.record(
            db,
            subject_id=request.user_id,
            action=AuditAction.REQUEST_VERIFIED,
            related_record_id=request.id,
            data={"request_type": request.request_type},
        )
        logger.info("Compliance request verified: id=%s type=%s", request.id, request.request_type)
        return request
