"""SystemEvent schema — notifications published by the compliance engine.

Subscribers are external collaborators (e-mail sender, admin alerts).
Delivery never affects request state; the audit trail is written separately
inside each unit of work.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class EventType(str, Enum):
    """All event types emitted by the engine."""

    # Request lifecycle
    REQUEST_CREATED = "gdpr.request_created"
    REQUEST_VERIFIED = "gdpr.request_verified"
    REQUEST_COMPLETED = "gdpr.request_completed"
    REQUEST_FAILED = "gdpr.request_failed"

    # Exports
    EXPORT_READY = "gdpr.export_ready"

    # Deletion
    DELETION_SCHEDULED = "gdpr.deletion_scheduled"
    DELETION_CANCELLED = "gdpr.deletion_cancelled"
    DELETION_COMPLETED = "gdpr.deletion_completed"
    DELETION_BATCH_FINISHED = "gdpr.deletion_batch_finished"

    # Consent
    CONSENT_UPDATED = "consent.updated"

    # System
    SYSTEM_STARTUP = "system.startup"
    SYSTEM_SHUTDOWN = "system.shutdown"


class SystemEvent(BaseModel):
    """Core event published by the engine.

    Immutable once created. `data` must never carry raw secrets except the
    verification token on REQUEST_CREATED, which the e-mail sender needs to
    build the verification link.
    """

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    event_type: EventType
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    # Context (optional — batch events have no subject)
    user_id: uuid.UUID | None = None
    request_id: uuid.UUID | None = None

    # Flexible payload
    data: dict[str, Any] = Field(default_factory=dict)

    # Metadata
    source_module: str | None = Field(default=None, description="Module that emitted this event")

    model_config = {"frozen": True}
