"""Request dispatcher — routes a VERIFIED request to its handler.

Lifecycle owned here:

    verified --dispatch--> processing --(success)--> completed
                           processing --(error)----> failed

Both writes are compare-and-set on the current status, so dispatching the
same request twice is a no-op the second time. Failure reasons go to the
audit trail only; the request row (what the subject sees) just says
`failed`. A stored request type outside RequestType fails with
`unsupported_request_type` instead of raising.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Protocol, assert_never

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.compliance.audit import AuditTrail, audit_trail
from src.compliance.errors import ComplianceError, PersistenceError, UnsupportedRequestType
from src.compliance.registry import RequestRegistry, request_registry
from src.models.compliance_request import ComplianceRequest
from src.models.enums import AuditAction, RequestStatus, RequestType

logger = logging.getLogger(__name__)


class HandlerOutcome(str, Enum):
    COMPLETED = "completed"
    DEFERRED = "deferred"  # stays PROCESSING; finished later (scheduled deletion)


@dataclass
class HandlerResult:
    outcome: HandlerOutcome = HandlerOutcome.COMPLETED
    # Columns written together with the COMPLETED transition
    values: dict[str, Any] = field(default_factory=dict)
    audit_data: dict[str, Any] = field(default_factory=dict)


Handler = Callable[[AsyncSession, ComplianceRequest, datetime], Awaitable[HandlerResult]]


class RequestHandlers(Protocol):
    """Processing routines, one per right."""

    async def export(self, db: AsyncSession, request: ComplianceRequest, now: datetime) -> HandlerResult: ...

    async def delete(self, db: AsyncSession, request: ComplianceRequest, now: datetime) -> HandlerResult: ...

    async def rectify(self, db: AsyncSession, request: ComplianceRequest, now: datetime) -> HandlerResult: ...

    async def withdraw_consent(
        self, db: AsyncSession, request: ComplianceRequest, now: datetime
    ) -> HandlerResult: ...

    async def restrict_processing(
        self, db: AsyncSession, request: ComplianceRequest, now: datetime
    ) -> HandlerResult: ...


def parse_request_type(value: str) -> RequestType:
    try:
        return RequestType(value)
    except ValueError:
        raise UnsupportedRequestType(f"Unknown request type: {value!r}", request_type=value) from None


def resolve_handler(handlers: RequestHandlers, request_type: RequestType) -> Handler:
    """Exhaustive routing over RequestType."""
    match request_type:
        case RequestType.DATA_EXPORT | RequestType.DATA_PORTABILITY:
            return handlers.export
        case RequestType.DATA_DELETION:
            return handlers.delete
        case RequestType.DATA_RECTIFICATION:
            return handlers.rectify
        case RequestType.CONSENT_WITHDRAWAL:
            return handlers.withdraw_consent
        case RequestType.PROCESSING_RESTRICTION:
            return handlers.restrict_processing
        case _:
            assert_never(request_type)


class RequestDispatcher:
    """Moves verified requests through processing to a terminal state."""

    def __init__(
        self,
        handlers: RequestHandlers,
        registry: RequestRegistry = request_registry,
        audit: AuditTrail = audit_trail,
    ) -> None:
        self._handlers = handlers
        self._registry = registry
        self._audit = audit

    async def dispatch(
        self,
        db: AsyncSession,
        request: ComplianceRequest,
        now: datetime | None = None,
    ) -> ComplianceRequest:
        """Process a VERIFIED request. Returns the request in its new state.

        Handler side effects run inside a savepoint: on failure they are
        rolled back while the FAILED transition and its audit entry stay.
        """
        now = now or datetime.now(UTC)

        processing = await self._registry.transition(
            db,
            request.id,
            from_status=RequestStatus.VERIFIED,
            to_status=RequestStatus.PROCESSING,
            now=now,
        )
        if processing is None:
            logger.warning("Request %s not dispatched: no longer VERIFIED", request.id)
            return request

        await self._audit.record(
            db,
            subject_id=processing.user_id,
            action=AuditAction.REQUEST_PROCESSING,
            related_record_id=processing.id,
            data={"request_type": processing.request_type},
        )

        try:
            request_type = parse_request_type(processing.request_type)
            handler = resolve_handler(self._handlers, request_type)
            logger.info("Processing %s request %s", request_type.value, processing.id)
            async with db.begin_nested():
                result = await handler(db, processing, now)
        except ComplianceError as exc:
            logger.warning("Request %s failed: %s", processing.id, exc.reason)
            return await self._fail(db, processing, exc.audit_data(), now)
        except SQLAlchemyError as exc:
            logger.exception("Persistence failure while processing request %s", processing.id)
            return await self._fail(db, processing, PersistenceError(str(exc)).audit_data(), now)
        except Exception as exc:
            logger.exception("Unexpected failure while processing request %s", processing.id)
            return await self._fail(
                db, processing, {"reason": "unexpected_error", "error_type": type(exc).__name__}, now
            )

        if result.outcome is HandlerOutcome.DEFERRED:
            logger.info("Request %s deferred (remains PROCESSING)", processing.id)
            return processing

        completed = await self._registry.transition(
            db,
            processing.id,
            from_status=RequestStatus.PROCESSING,
            to_status=RequestStatus.COMPLETED,
            now=now,
            values={"processed_at": now, **result.values},
        )
        if completed is None:
            return processing

        await self._audit.record(
            db,
            subject_id=completed.user_id,
            action=AuditAction.REQUEST_COMPLETED,
            related_record_id=completed.id,
            data={"request_type": completed.request_type, **result.audit_data},
        )
        logger.info("Completed %s request %s", completed.request_type, completed.id)
        return completed

    async def _fail(
        self,
        db: AsyncSession,
        request: ComplianceRequest,
        audit_data: dict[str, Any],
        now: datetime,
    ) -> ComplianceRequest:
        failed = await self._registry.transition(
            db,
            request.id,
            from_status=RequestStatus.PROCESSING,
            to_status=RequestStatus.FAILED,
            now=now,
            values={"processed_at": now},
        )
        await self._audit.record(
            db,
            subject_id=request.user_id,
            action=AuditAction.REQUEST_FAILED,
            related_record_id=request.id,
            data={"request_type": request.request_type, **audit_data},
        )
        return failed or request
