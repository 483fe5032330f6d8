"""Consent ledger — updates consent preferences and records each change.

The profile holds only the latest consent state (last write wins). The
history lives in the audit log: every update appends one entry carrying
the previous state and the full new state.
"""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime

from sqlalchemy.ext.asyncio import AsyncSession

from src.compliance.audit import AuditTrail, audit_trail
from src.compliance.errors import NotFoundOrExpired
from src.models.enums import AuditAction
from src.models.user import User
from src.schemas.compliance import ConsentStateOut, ConsentUpdate

logger = logging.getLogger(__name__)


def _consent_state(user: User) -> dict[str, bool]:
    return {
        "marketing": bool(user.marketing_consent),
        "data_processing": bool(user.data_processing_consent),
    }


class ConsentLedger:
    """Stateless consent operations — AsyncSession passed per call."""

    def __init__(self, audit: AuditTrail = audit_trail) -> None:
        self._audit = audit

    async def _load_subject(self, db: AsyncSession, subject_id: uuid.UUID) -> User:
        user = await db.get(User, subject_id)
        if user is None or user.is_anonymized:
            raise NotFoundOrExpired("Subject not found", subject_id=subject_id)
        return user

    async def get_consent(self, db: AsyncSession, subject_id: uuid.UUID) -> ConsentStateOut:
        user = await self._load_subject(db, subject_id)
        return ConsentStateOut(**_consent_state(user), consent_timestamp=user.consent_timestamp)

    async def update_consent(
        self,
        db: AsyncSession,
        subject_id: uuid.UUID,
        consents: ConsentUpdate,
        *,
        method: str = "preference_update",
        now: datetime | None = None,
    ) -> User:
        """Merge `consents` into the subject's profile and audit the change.

        Keys left out of `consents` keep their current value; all provided
        keys are written together with one timestamp.
        """
        now = now or datetime.now(UTC)
        user = await self._load_subject(db, subject_id)

        previous = _consent_state(user)
        new_state = {**previous, **consents.model_dump(exclude_none=True)}

        user.marketing_consent = new_state["marketing"]
        user.data_processing_consent = new_state["data_processing"]
        user.consent_timestamp = now
        await db.flush()

        await self._audit.record(
            db,
            subject_id=subject_id,
            action=AuditAction.CONSENT_UPDATED,
            related_record_id=subject_id,
            data={
                "previous_consents": previous,
                "new_consents": new_state,
                "changed": sorted(k for k in new_state if new_state[k] != previous[k]),
                "method": method,
                "timestamp": now.isoformat(),
            },
        )
        logger.info(
            "Consent updated: user=%s marketing=%s data_processing=%s method=%s",
            subject_id,
            new_state["marketing"],
            new_state["data_processing"],
            method,
        )
        return user


# Module-level singleton
consent_ledger = ConsentLedger()
