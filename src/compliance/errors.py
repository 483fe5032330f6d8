"""Error taxonomy of the compliance engine.

Every error carries a stable `reason` code. The code is what ends up in the
audit trail and in API error bodies; exception messages stay in logs.
`retryable` tells batch loops and the web layer whether trying again later
can succeed (store outages) or never will (caller mistakes).
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any


class ComplianceError(Exception):
    """Base class for all engine errors."""

    reason: str = "compliance_error"
    retryable: bool = False

    def __init__(self, message: str = "", **details: Any) -> None:
        super().__init__(message or self.reason)
        self.details = details

    def audit_data(self) -> dict[str, Any]:
        """Payload written to the audit log for this failure."""
        return {"reason": self.reason, **{k: _jsonable(v) for k, v in self.details.items()}}


class ValidationError(ComplianceError):
    """Malformed input to an intake call."""

    reason = "validation_error"


class NotFoundOrExpired(ComplianceError):
    """Unknown request, or a verification token that is invalid, used or expired."""

    reason = "not_found_or_expired"


class UnsupportedRequestType(ComplianceError):
    reason = "unsupported_request_type"


class UnsupportedFormatError(ComplianceError):
    """Export format outside the supported set. A caller error."""

    reason = "unsupported_format"


class AggregationError(ComplianceError):
    """One or more data sources could not be read."""

    reason = "aggregation_failed"
    retryable = True

    def __init__(self, failed_sources: Sequence[str], message: str = "") -> None:
        self.failed_sources = list(failed_sources)
        super().__init__(
            message or f"Data sources unavailable: {', '.join(self.failed_sources)}",
            failed_sources=self.failed_sources,
        )


class PersistenceError(ComplianceError):
    """The request store or audit sink is unavailable."""

    reason = "persistence_error"
    retryable = True


class AnonymizationError(ComplianceError):
    """Anonymization of a single subject failed inside a deletion batch."""

    reason = "anonymization_failed"
    retryable = True

    def __init__(self, subject_id: Any, message: str = "") -> None:
        self.subject_id = subject_id
        super().__init__(message or f"Anonymization failed for {subject_id}", subject_id=subject_id)


def _jsonable(value: Any) -> Any:
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return str(value)
