"""Pydantic schemas for compliance request intake and status views."""

from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from src.models.enums import ExportFormat, RequestType

# Profile fields a subject may correct through a rectification request
RECTIFIABLE_FIELDS: frozenset[str] = frozenset({"first_name", "last_name", "phone", "timezone"})


class Provenance(BaseModel):
    """Where an intake call came from. Stored once, never changed."""

    model_config = ConfigDict(frozen=True)

    ip_address: str | None = Field(default=None, max_length=45)
    user_agent: str | None = Field(default=None, max_length=1000)
    notes: str | None = Field(default=None, max_length=1000)


class RequestOptions(BaseModel):
    """Type-specific intake options, persisted on the request."""

    model_config = ConfigDict(extra="forbid")

    export_format: ExportFormat | None = None
    rectifications: dict[str, str] | None = None

    @field_validator("rectifications")
    @classmethod
    def validate_rectifications(cls, v: dict[str, str] | None) -> dict[str, str] | None:
        """Only whitelisted profile fields may be rectified."""
        if v is None:
            return v
        unknown = set(v) - RECTIFIABLE_FIELDS
        if unknown:
            msg = f"Fields cannot be rectified: {sorted(unknown)}"
            raise ValueError(msg)
        for field, value in v.items():
            if len(value) > 255:
                msg = f"Value for {field} is too long"
                raise ValueError(msg)
        return v


class CreateRequestIn(BaseModel):
    """Body of POST /api/gdpr/requests."""

    model_config = ConfigDict(extra="forbid")

    request_type: RequestType
    notes: str | None = Field(default=None, max_length=1000)
    export_format: ExportFormat | None = None
    rectifications: dict[str, str] | None = None

    @model_validator(mode="after")
    def check_type_specific_options(self) -> CreateRequestIn:
        if self.export_format is not None and not self.request_type.is_export:
            msg = "export_format only applies to export requests"
            raise ValueError(msg)
        if self.rectifications and self.request_type is not RequestType.DATA_RECTIFICATION:
            msg = "rectifications only apply to data_rectification requests"
            raise ValueError(msg)
        return self

    def options(self) -> RequestOptions:
        return RequestOptions(export_format=self.export_format, rectifications=self.rectifications)


class CreateRequestOut(BaseModel):
    """Result of intake. The token is delivered out-of-band to the subject."""

    request_id: uuid.UUID
    verification_token: str
    request_type: RequestType
    status: str


class RequestAcceptedOut(BaseModel):
    """HTTP view of a created request. The token only travels by e-mail."""

    request_id: uuid.UUID
    request_type: RequestType
    status: str


class RequestStatusOut(BaseModel):
    """Subject-facing status view. Carries no failure internals."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    request_type: str
    status: str
    created_at: datetime
    verified_at: datetime | None = None
    processed_at: datetime | None = None
    export_url: str | None = None
    export_format: str | None = None
    expires_at: datetime | None = None
    deletion_scheduled_at: datetime | None = None
    cancelled_at: datetime | None = None


class ConsentUpdate(BaseModel):
    """Consent preferences to change. Omitted keys keep their current value."""

    model_config = ConfigDict(extra="forbid")

    marketing: bool | None = None
    data_processing: bool | None = None

    @model_validator(mode="after")
    def at_least_one(self) -> ConsentUpdate:
        if self.marketing is None and self.data_processing is None:
            msg = "At least one consent preference must be provided"
            raise ValueError(msg)
        return self


class ConsentStateOut(BaseModel):
    marketing: bool
    data_processing: bool
    consent_timestamp: datetime | None = None


class CancelDeletionOut(BaseModel):
    cancelled: int


class DeletionBatchOut(BaseModel):
    processed_count: int
    error_count: int
    skipped_count: int
    processed_subject_ids: list[uuid.UUID]
