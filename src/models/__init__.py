"""SQLAlchemy ORM models for the compliance service.

Import all models here so Alembic and Base.metadata.create_all() discover them.
"""

from __future__ import annotations

from src.models.audit import AuditLog
from src.models.availability import AvailabilityRule
from src.models.base import Base
from src.models.billing import BillingRecord, UsageRecord
from src.models.booking import Booking
from src.models.calendar import CalendarToken
from src.models.compliance_request import ComplianceRequest
from src.models.enums import (
    AuditAction,
    BookingStatus,
    ExportFormat,
    RequestStatus,
    RequestType,
)
from src.models.notification import Notification
from src.models.user import User
from src.models.user_settings import UserSettings

__all__ = [
    # Base
    "Base",
    # Models
    "User",
    "UserSettings",
    "Booking",
    "AvailabilityRule",
    "CalendarToken",
    "Notification",
    "BillingRecord",
    "UsageRecord",
    "ComplianceRequest",
    "AuditLog",
    # Enums
    "RequestType",
    "RequestStatus",
    "ExportFormat",
    "BookingStatus",
    "AuditAction",
]
