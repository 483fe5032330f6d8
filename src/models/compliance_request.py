"""ComplianceRequest model — a data subject rights request and its lifecycle.

Rows are never deleted: the request is itself an audit record. Status only
moves forward (pending → verified → processing → completed | failed) and
every transition is written as a conditional UPDATE keyed on the current
status (see src.compliance.registry).
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, ForeignKey, Index, String, Text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from src.models.base import Base, TimestampMixin
from src.models.enums import RequestStatus


class ComplianceRequest(TimestampMixin, Base):
    """A GDPR request (export, deletion, rectification, …)."""

    __tablename__ = "compliance_requests"

    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True
    )
    request_type: Mapped[str] = mapped_column(String(40), nullable=False, comment="RequestType enum value")
    status: Mapped[str] = mapped_column(
        String(20), default=RequestStatus.PENDING.value, nullable=False, index=True
    )

    # Verification
    verification_token: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    # Provenance (immutable once set)
    ip_address: Mapped[str | None] = mapped_column(String(45))
    user_agent: Mapped[str | None] = mapped_column(Text)
    notes: Mapped[str | None] = mapped_column(Text)
    options: Mapped[dict[str, Any] | None] = mapped_column(
        JSONB, default=dict, comment="Intake options: export format, rectifications"
    )

    # Export outcome
    export_url: Mapped[str | None] = mapped_column(String(500))
    export_format: Mapped[str | None] = mapped_column(String(10))
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    # Deletion scheduling
    deletion_scheduled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), index=True)
    executed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cancellation_reason: Mapped[str | None] = mapped_column(Text)

    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        Index("ix_compliance_requests_due", "request_type", "status", "deletion_scheduled_at"),
    )

    def __repr__(self) -> str:
        return f"<ComplianceRequest id={self.id} type={self.request_type} status={self.status}>"
