"""Booking model — meetings hosted by, or booked by, a user."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from src.models.base import Base, TimestampMixin
from src.models.enums import BookingStatus


class Booking(TimestampMixin, Base):
    """A scheduled meeting between a host and an attendee."""

    __tablename__ = "bookings"

    host_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True
    )
    attendee_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), index=True, comment="Set when the attendee has an account"
    )
    attendee_name: Mapped[str] = mapped_column(String(100), nullable=False)
    attendee_email: Mapped[str] = mapped_column(String(255), nullable=False)
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    calendar_event_id: Mapped[str | None] = mapped_column(String(255))
    status: Mapped[str] = mapped_column(String(20), default=BookingStatus.CONFIRMED.value)

    def __repr__(self) -> str:
        return f"<Booking host={self.host_id} start={self.start_time} status={self.status}>"
