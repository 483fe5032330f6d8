"""User model — the data subject whose rights requests this service handles.

Anonymization overwrites PII in place and stamps `anonymized_at`; the row and
its id are kept so historical bookings and the audit trail stay consistent.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from src.models.base import Base, TimestampMixin


class User(TimestampMixin, Base):
    """A registered account (host of bookings)."""

    __tablename__ = "users"

    # Profile
    first_name: Mapped[str | None] = mapped_column(String(100))
    last_name: Mapped[str | None] = mapped_column(String(100))
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    phone: Mapped[str | None] = mapped_column(String(20))
    timezone: Mapped[str] = mapped_column(String(100), default="UTC")
    calendar_provider: Mapped[str] = mapped_column(String(20), default="none")

    # Credentials and one-time secrets — never exported
    password_hash: Mapped[str | None] = mapped_column(Text)
    email_verified: Mapped[bool] = mapped_column(Boolean, default=False)
    email_verification_token: Mapped[str | None] = mapped_column(String(255))
    password_reset_token: Mapped[str | None] = mapped_column(String(255))

    # Payment provider references
    stripe_customer_id: Mapped[str | None] = mapped_column(String(255))
    stripe_subscription_id: Mapped[str | None] = mapped_column(String(255))

    # Consent (latest state; history lives in the audit log)
    marketing_consent: Mapped[bool] = mapped_column(Boolean, default=False)
    data_processing_consent: Mapped[bool] = mapped_column(Boolean, default=True)
    consent_timestamp: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    # Account state
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    processing_restricted: Mapped[bool] = mapped_column(Boolean, default=False)
    anonymized_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), index=True, comment="Set once PII has been overwritten"
    )

    @property
    def is_anonymized(self) -> bool:
        return self.anonymized_at is not None

    def __repr__(self) -> str:
        return f"<User id={self.id} anonymized={self.is_anonymized}>"
