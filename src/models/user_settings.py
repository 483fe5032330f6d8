"""UserSettings model — per-user preferences (read-only for this engine)."""

from __future__ import annotations

import uuid

from sqlalchemy import Boolean, ForeignKey, Integer, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from src.models.base import Base, TimestampMixin


class UserSettings(TimestampMixin, Base):
    """Booking page and notification preferences of a user."""

    __tablename__ = "user_settings"

    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, unique=True
    )
    branding_color: Mapped[str | None] = mapped_column(String(7))
    booking_horizon_days: Mapped[int] = mapped_column(Integer, default=30)
    meeting_duration: Mapped[int] = mapped_column(Integer, default=30)
    email_notifications: Mapped[bool] = mapped_column(Boolean, default=True)
    sms_notifications: Mapped[bool] = mapped_column(Boolean, default=False)
    google_analytics_id: Mapped[str | None] = mapped_column(String(50))
