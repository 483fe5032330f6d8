"""Domain enums used across SQLAlchemy models and Pydantic schemas.

All enums use str mixin for JSON serialization. Columns store the plain
`.value`, so a stored value outside the enum (legacy rows) still loads and
is rejected only where it is interpreted.
"""

from __future__ import annotations

from enum import Enum


class RequestType(str, Enum):
    """Data subject rights a compliance request can exercise."""

    DATA_EXPORT = "data_export"
    DATA_DELETION = "data_deletion"
    DATA_RECTIFICATION = "data_rectification"
    CONSENT_WITHDRAWAL = "consent_withdrawal"
    DATA_PORTABILITY = "data_portability"
    PROCESSING_RESTRICTION = "processing_restriction"

    @property
    def is_export(self) -> bool:
        return self in EXPORT_REQUEST_TYPES


EXPORT_REQUEST_TYPES: frozenset[RequestType] = frozenset({
    RequestType.DATA_EXPORT,
    RequestType.DATA_PORTABILITY,
})


class RequestStatus(str, Enum):
    """Compliance request lifecycle. Transitions only move forward."""

    PENDING = "pending"
    VERIFIED = "verified"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RequestStatus.COMPLETED, RequestStatus.FAILED)


class ExportFormat(str, Enum):
    """Supported export artifact formats."""

    JSON = "json"
    CSV = "csv"


class BookingStatus(str, Enum):
    """Booking lifecycle states (read-only for this engine)."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class AuditAction(str, Enum):
    """Actions written to the append-only audit log."""

    REQUEST_CREATED = "compliance_request_created"
    REQUEST_VERIFIED = "compliance_request_verified"
    REQUEST_PROCESSING = "compliance_request_processing"
    REQUEST_COMPLETED = "compliance_request_completed"
    REQUEST_FAILED = "compliance_request_failed"
    DATA_EXPORTED = "data_exported"
    DELETION_SCHEDULED = "deletion_scheduled"
    DELETION_CANCELLED = "deletion_cancelled"
    ACCOUNT_ANONYMIZED = "account_anonymized"
    ANONYMIZATION_FAILED = "anonymization_failed"
    CONSENT_UPDATED = "consent_updated"
    DATA_RECTIFIED = "data_rectified"
    PROCESSING_RESTRICTED = "processing_restricted"
