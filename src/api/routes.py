"""Data subject rights API — FastAPI router under /api/gdpr.

Authentication is handled upstream; the authenticated subject arrives in the
X-Subject-Id header. Engine errors are mapped onto HTTP status codes by
reason, so raw exception text never reaches the subject.
"""
# ruff: noqa: B008

from __future__ import annotations

import logging
import uuid
from functools import lru_cache

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status

from src.compliance.errors import (
    AggregationError,
    ComplianceError,
    NotFoundOrExpired,
    PersistenceError,
    UnsupportedFormatError,
    UnsupportedRequestType,
    ValidationError,
)
from src.compliance.service import ComplianceService, build_compliance_service
from src.db.engine import async_session_factory
from src.schemas.compliance import (
    CancelDeletionOut,
    ConsentStateOut,
    ConsentUpdate,
    CreateRequestIn,
    Provenance,
    RequestAcceptedOut,
    RequestStatusOut,
)
from src.security.rate_limiter import RateLimiter, intake_limiter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/gdpr", tags=["gdpr"])

_STATUS_BY_ERROR: list[tuple[type[ComplianceError], int]] = [
    (ValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (NotFoundOrExpired, status.HTTP_404_NOT_FOUND),
    (UnsupportedRequestType, status.HTTP_400_BAD_REQUEST),
    (UnsupportedFormatError, status.HTTP_400_BAD_REQUEST),
    (AggregationError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (PersistenceError, status.HTTP_503_SERVICE_UNAVAILABLE),
]


def to_http_error(exc: ComplianceError) -> HTTPException:
    """Translate an engine error into its HTTP response."""
    status_code = status.HTTP_400_BAD_REQUEST
    for error_type, code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            status_code = code
            break
    return HTTPException(
        status_code=status_code,
        detail={"reason": exc.reason, "retryable": exc.retryable},
    )


# ── Dependencies ─────────────────────────────────────────────────────


@lru_cache(maxsize=1)
def get_compliance_service() -> ComplianceService:
    return build_compliance_service(async_session_factory)


def get_rate_limiter() -> RateLimiter:
    return intake_limiter


async def get_subject_id(x_subject_id: str | None = Header(default=None)) -> uuid.UUID:
    """FastAPI dependency — the authenticated subject, or 401."""
    if not x_subject_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing subject identity")
    try:
        return uuid.UUID(x_subject_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid subject identity"
        ) from None


# ── Requests ─────────────────────────────────────────────────────────


@router.post("/requests", status_code=status.HTTP_201_CREATED)
async def create_request(
    body: CreateRequestIn,
    request: Request,
    subject_id: uuid.UUID = Depends(get_subject_id),
    service: ComplianceService = Depends(get_compliance_service),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> RequestAcceptedOut:
    """Create a compliance request. The verification token goes out by e-mail."""
    allowed, retry_after = await limiter.check_intake(subject_id)
    if not allowed:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail={"reason": "rate_limited", "retryable": True},
            headers={"Retry-After": str(retry_after)},
        )

    provenance = Provenance(
        ip_address=request.client.host if request.client else None,
        user_agent=(request.headers.get("user-agent") or "")[:1000] or None,
        notes=body.notes,
    )
    try:
        created = await service.create_request(subject_id, body.request_type, provenance, body.options())
    except ComplianceError as exc:
        raise to_http_error(exc) from exc
    return RequestAcceptedOut(
        request_id=created.request_id,
        request_type=created.request_type,
        status=created.status,
    )


@router.post("/verify/{token}")
async def verify_request(
    token: str,
    service: ComplianceService = Depends(get_compliance_service),
) -> RequestStatusOut:
    """Redeem a verification token; the request is processed before returning."""
    try:
        result = await service.verify(token)
    except ComplianceError as exc:
        raise to_http_error(exc) from exc
    return RequestStatusOut.model_validate(result)


@router.get("/requests/{request_id}")
async def get_request_status(
    request_id: uuid.UUID,
    subject_id: uuid.UUID = Depends(get_subject_id),
    service: ComplianceService = Depends(get_compliance_service),
) -> RequestStatusOut:
    try:
        result = await service.get_status(request_id, subject_id)
    except ComplianceError as exc:
        raise to_http_error(exc) from exc
    return RequestStatusOut.model_validate(result)


@router.get("/requests")
async def list_requests(
    subject_id: uuid.UUID = Depends(get_subject_id),
    service: ComplianceService = Depends(get_compliance_service),
) -> list[RequestStatusOut]:
    """The subject's requests, newest first."""
    try:
        requests = await service.list_requests(subject_id)
    except ComplianceError as exc:
        raise to_http_error(exc) from exc
    return [RequestStatusOut.model_validate(r) for r in requests]


# ── Consent ──────────────────────────────────────────────────────────


@router.get("/consent")
async def get_consent(
    subject_id: uuid.UUID = Depends(get_subject_id),
    service: ComplianceService = Depends(get_compliance_service),
) -> ConsentStateOut:
    try:
        return await service.get_consent(subject_id)
    except ComplianceError as exc:
        raise to_http_error(exc) from exc


@router.put("/consent")
async def update_consent(
    body: ConsentUpdate,
    subject_id: uuid.UUID = Depends(get_subject_id),
    service: ComplianceService = Depends(get_compliance_service),
) -> ConsentStateOut:
    try:
        return await service.update_consent(subject_id, body)
    except ComplianceError as exc:
        raise to_http_error(exc) from exc


# ── Deletion ─────────────────────────────────────────────────────────


@router.post("/deletion/cancel")
async def cancel_deletion(
    subject_id: uuid.UUID = Depends(get_subject_id),
    service: ComplianceService = Depends(get_compliance_service),
) -> CancelDeletionOut:
    """Withdraw a scheduled account deletion during its grace period."""
    try:
        cancelled = await service.cancel_deletion(subject_id)
    except ComplianceError as exc:
        raise to_http_error(exc) from exc
    if cancelled:
        logger.info("Subject %s cancelled %d scheduled deletion(s)", subject_id, cancelled)
    return CancelDeletionOut(cancelled=cancelled)
