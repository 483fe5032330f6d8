"""SQLAlchemy-backed data sources for the aggregator.

Every source opens its own short read-only session, so sources can be
queried concurrently without sharing an AsyncSession.
"""

from __future__ import annotations

import enum
import uuid
from collections.abc import Sequence
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any

from sqlalchemy import inspect, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import InstrumentedAttribute

from src.config import ComplianceSettings
from src.models.audit import AuditLog
from src.models.availability import AvailabilityRule
from src.models.billing import BillingRecord, UsageRecord
from src.models.booking import Booking
from src.models.calendar import CalendarToken
from src.models.compliance_request import ComplianceRequest
from src.models.notification import Notification
from src.models.user import User
from src.models.user_settings import UserSettings


def to_jsonable(value: Any) -> Any:
    """Convert a column value into a JSON-native value."""
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    return value


def row_to_dict(obj: Any) -> dict[str, Any]:
    """Column attributes of an ORM instance as a JSON-native dict."""
    mapper = inspect(obj).mapper
    return {attr.key: to_jsonable(getattr(obj, attr.key)) for attr in mapper.column_attrs}


class ModelSource:
    """Rows of one model that reference the subject through any of `subject_columns`."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        name: str,
        data_type: str,
        model: type[Any],
        subject_columns: Sequence[InstrumentedAttribute[Any]],
        many: bool = True,
        order_by: Any = None,
        limit: int | None = None,
    ) -> None:
        self.name = name
        self.data_type = data_type
        self._session_factory = session_factory
        self._model = model
        self._subject_columns = list(subject_columns)
        self._many = many
        self._order_by = order_by
        self._limit = limit

    async def fetch(self, subject_id: uuid.UUID) -> Any:
        stmt = select(self._model).where(or_(*[col == subject_id for col in self._subject_columns]))
        if self._order_by is not None:
            stmt = stmt.order_by(self._order_by)
        if self._limit is not None:
            stmt = stmt.limit(self._limit)

        async with self._session_factory() as db:
            result = await db.execute(stmt)
            rows = result.scalars().all()

        if self._many:
            return [row_to_dict(row) for row in rows]
        return row_to_dict(rows[0]) if rows else None

    def __repr__(self) -> str:
        return f"<ModelSource {self.name}>"


def default_sources(
    session_factory: async_sessionmaker[AsyncSession],
    config: ComplianceSettings,
) -> list[ModelSource]:
    """All stores holding personal data, in export section order."""

    def source(name: str, data_type: str, model: type[Any], *columns: Any, **kwargs: Any) -> ModelSource:
        return ModelSource(
            session_factory,
            name=name,
            data_type=data_type,
            model=model,
            subject_columns=columns,
            **kwargs,
        )

    return [
        source("profile", "user_account", User, User.id, many=False),
        source("settings", "user_settings", UserSettings, UserSettings.user_id, many=False),
        source(
            "bookings", "booking", Booking, Booking.host_id, Booking.attendee_id,
            order_by=Booking.start_time.desc(),
        ),
        source(
            "availability_rules", "availability_rule", AvailabilityRule, AvailabilityRule.user_id,
            order_by=AvailabilityRule.day_of_week.asc(),
        ),
        source("calendar_integrations", "calendar_integration", CalendarToken, CalendarToken.user_id),
        source(
            "notifications", "notification", Notification, Notification.user_id,
            order_by=Notification.created_at.desc(),
        ),
        source(
            "audit_history", "audit_log", AuditLog, AuditLog.user_id,
            order_by=AuditLog.created_at.desc(),
            limit=config.audit_history_limit,
        ),
        source(
            "billing_history", "billing_record", BillingRecord, BillingRecord.user_id,
            order_by=BillingRecord.created_at.desc(),
        ),
        source(
            "usage_records", "usage_record", UsageRecord, UsageRecord.user_id,
            order_by=UsageRecord.timestamp.desc(),
        ),
        source(
            "compliance_requests", "compliance_request", ComplianceRequest, ComplianceRequest.user_id,
            order_by=ComplianceRequest.created_at.desc(),
        ),
    ]
