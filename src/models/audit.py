"""AuditLog model — immutable audit trail of compliance actions.

This table is append-only — no updates or deletes. Entries outlive
anonymization: they reference the subject by id only.
"""

from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import String
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from src.models.base import Base, TimestampMixin


class AuditLog(TimestampMixin, Base):
    """Immutable audit trail entry."""

    __tablename__ = "audit_log"

    # Subject (nullable for system-wide entries such as batch summaries)
    user_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), index=True)

    action: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    related_record_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), comment="Compliance request or user the entry refers to"
    )

    # Flexible JSONB payload
    data: Mapped[dict[str, Any] | None] = mapped_column(JSONB)

    def __repr__(self) -> str:
        return f"<AuditLog action={self.action} user={self.user_id}>"
