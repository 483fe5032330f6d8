"""AvailabilityRule model — weekly bookable windows of a user."""

from __future__ import annotations

import uuid
from datetime import time

from sqlalchemy import ForeignKey, Integer, Time
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from src.models.base import Base, TimestampMixin


class AvailabilityRule(TimestampMixin, Base):
    __tablename__ = "availability_rules"

    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True
    )
    day_of_week: Mapped[int] = mapped_column(Integer, nullable=False, comment="0=Sunday … 6=Saturday")
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)
    buffer_minutes: Mapped[int] = mapped_column(Integer, default=0)
    max_bookings_per_day: Mapped[int | None] = mapped_column(Integer)
