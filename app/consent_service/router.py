"""
Consent management API routes.

Consent retrieval and update, GDPR withdrawal, the user's audit trail
and the active privacy policy.
"""

from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from app.ai_service.utils.logger import get_logger
from app.common.audit_logger import AuditAction, AuditLogRequest
from app.consent_service.schemas import (
    AuditLogsResponse,
    ConsentResponse,
    ConsentUpdate,
    Pagination,
    PrivacyPolicyVersion,
    RevokeResponse,
)
from app.consent_service.service import (
    PolicyNotFoundError,
    PrivacyService,
    PrivacyStoreError,
)
from app.core.dependencies import get_privacy_service
from app.core.errors import InternalError, NotFound, Unauthorized, ValidationFailed

logger = get_logger(__name__)

router = APIRouter(
    prefix="/api/v1/ai/consent",
    tags=["Consent"],
)

DEFAULT_AUDIT_LIMIT = 50
MAX_AUDIT_LIMIT = 200


def get_consent_user_id(
    request: Request,
    service: PrivacyService = Depends(get_privacy_service),
) -> str:
    """
    Raises:
        Unauthorized: If no user id can be resolved from the request.
    """
    try:
        return service.extract_user_id_from_request(request)
    except ValueError as exc:
        logger.warning(
            "Failed to extract user ID from request",
            extra={"path": request.url.path},
        )
        raise Unauthorized(
            "Authentication required",
            details={"details": str(exc)},
        ) from exc


def _client(request: Request) -> tuple[str, str]:
    return (
        getattr(request.state, "ip_address", ""),
        getattr(request.state, "user_agent", ""),
    )


def _parse_page_param(raw: Optional[str], default: int, low: int, high: int) -> int:
    try:
        value = int(raw) if raw is not None else default
    except ValueError:
        return default
    return value if low <= value <= high else default


@router.get("", response_model=ConsentResponse)
def read_consent(
    request: Request,
    user_id: str = Depends(get_consent_user_id),
    service: PrivacyService = Depends(get_privacy_service),
) -> ConsentResponse:
    """
    Retrieve the current user's consent settings.
    """
    try:
        consent = service.get_user_consent(user_id)
    except PrivacyStoreError as exc:
        logger.exception("Failed to get user consent", extra={"user_id": user_id})
        raise InternalError(
            "Failed to retrieve consent",
            details={"details": str(exc)},
        ) from exc

    ip_address, user_agent = _client(request)
    service.log_action_best_effort(
        AuditLogRequest(
            user_id=user_id,
            action=AuditAction.DATA_ACCESSED,
            resource_type="user_consent",
            details={
                "access_type": "consent_retrieval",
                "endpoint": "/api/v1/ai/consent",
            },
            ip_address=ip_address or None,
            user_agent=user_agent or None,
        )
    )

    return ConsentResponse.from_consent(consent)


@router.put("", response_model=ConsentResponse)
def update_consent(
    payload: ConsentUpdate,
    request: Request,
    user_id: str = Depends(get_consent_user_id),
    service: PrivacyService = Depends(get_privacy_service),
) -> ConsentResponse:
    """
    Update any subset of the consent flags.
    """
    ip_address, user_agent = _client(request)

    try:
        return service.update_user_consent(user_id, payload, ip_address, user_agent)
    except ValueError as exc:
        raise ValidationFailed(
            "Invalid request body",
            details={"details": str(exc)},
        ) from exc
    except PrivacyStoreError as exc:
        logger.exception("Failed to update user consent", extra={"user_id": user_id})
        raise InternalError(
            "Failed to update consent",
            details={"details": str(exc)},
        ) from exc


@router.delete("", response_model=RevokeResponse)
def revoke_consent(
    request: Request,
    user_id: str = Depends(get_consent_user_id),
    service: PrivacyService = Depends(get_privacy_service),
) -> RevokeResponse:
    """
    Withdraw all consent (GDPR right to withdraw).
    """
    ip_address, user_agent = _client(request)

    try:
        service.revoke_all_consent(user_id, ip_address, user_agent)
    except PrivacyStoreError as exc:
        logger.exception("Failed to revoke consent", extra={"user_id": user_id})
        raise InternalError(
            "Failed to revoke consent",
            details={"details": str(exc)},
        ) from exc

    logger.info("All consent revoked", extra={"user_id": user_id})

    return RevokeResponse(
        message="All consent has been successfully revoked",
        user_id=user_id,
        revoked_at=datetime.now(timezone.utc),
        gdpr_compliant=True,
    )


@router.get("/audit", response_model=AuditLogsResponse)
def read_audit_logs(
    request: Request,
    limit: Optional[str] = Query(None),
    offset: Optional[str] = Query(None),
    user_id: str = Depends(get_consent_user_id),
    service: PrivacyService = Depends(get_privacy_service),
) -> AuditLogsResponse:
    """
    Page through the user's own audit trail, newest first.

    Out-of-range or non-numeric paging values fall back to the defaults.
    """
    page_limit = _parse_page_param(limit, DEFAULT_AUDIT_LIMIT, 1, MAX_AUDIT_LIMIT)
    page_offset = _parse_page_param(offset, 0, 0, 2**31 - 1)

    try:
        logs, total = service.get_user_audit_logs(user_id, page_limit, page_offset)
    except PrivacyStoreError as exc:
        logger.exception("Failed to get user audit logs", extra={"user_id": user_id})
        raise InternalError(
            "Failed to retrieve audit logs",
            details={"details": str(exc)},
        ) from exc

    ip_address, user_agent = _client(request)
    service.log_action_best_effort(
        AuditLogRequest(
            user_id=user_id,
            action=AuditAction.DATA_ACCESSED,
            resource_type="audit_logs",
            details={
                "access_type": "audit_log_retrieval",
                "endpoint": "/api/v1/ai/consent/audit",
                "limit": page_limit,
                "offset": page_offset,
                "returned": len(logs),
            },
            ip_address=ip_address or None,
            user_agent=user_agent or None,
        )
    )

    return AuditLogsResponse(
        audit_logs=logs,
        pagination=Pagination(
            total_count=total,
            limit=page_limit,
            offset=page_offset,
            returned=len(logs),
            has_next=page_offset + len(logs) < total,
            has_prev=page_offset > 0,
        ),
        user_id=user_id,
    )


@router.get("/policy", response_model=PrivacyPolicyVersion)
def read_privacy_policy(
    service: PrivacyService = Depends(get_privacy_service),
) -> PrivacyPolicyVersion:
    """
    Return the active privacy policy version. No authentication required.
    """
    try:
        return service.get_active_privacy_policy_version()
    except PolicyNotFoundError as exc:
        raise NotFound("No active privacy policy") from exc
    except PrivacyStoreError as exc:
        logger.exception("Failed to get active privacy policy")
        raise InternalError(
            "Failed to retrieve privacy policy",
            details={"details": str(exc)},
        ) from exc
