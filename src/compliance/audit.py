"""Audit trail — append-only writer for the audit_log table.

`record()` adds the entry to the caller's session so it commits or rolls
back together with the change it describes. `record_detached()` opens its
own session; it is used on failure paths where the caller's transaction has
already been rolled back but the failure still needs a trace.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.models.audit import AuditLog
from src.models.enums import AuditAction

logger = logging.getLogger(__name__)


class AuditTrail:
    """Writes AuditLog rows. Never updates or deletes them."""

    async def record(
        self,
        db: AsyncSession,
        *,
        subject_id: uuid.UUID | None,
        action: AuditAction,
        related_record_id: uuid.UUID | None = None,
        data: dict[str, Any] | None = None,
    ) -> AuditLog:
        """Append an entry inside the caller's transaction."""
        entry = AuditLog(
            user_id=subject_id,
            action=action.value,
            related_record_id=related_record_id,
            data=data or {},
        )
        db.add(entry)
        await db.flush()
        logger.debug("Audit %s: user=%s record=%s", action.value, subject_id, related_record_id)
        return entry

    async def record_detached(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        subject_id: uuid.UUID | None,
        action: AuditAction,
        related_record_id: uuid.UUID | None = None,
        data: dict[str, Any] | None = None,
    ) -> bool:
        """Append an entry in a fresh transaction. Returns False if the sink is down.

        The caller is already handling a failure, so a second failure here is
        logged rather than raised over the first one.
        """
        try:
            async with session_factory() as db:
                await self.record(
                    db,
                    subject_id=subject_id,
                    action=action,
                    related_record_id=related_record_id,
                    data=data,
                )
                await db.commit()
        except Exception:
            logger.exception(
                "Failed to persist audit entry %s (user=%s record=%s)",
                action.value,
                subject_id,
                related_record_id,
            )
            return False
        return True


# Module-level singleton
audit_trail = AuditTrail()
