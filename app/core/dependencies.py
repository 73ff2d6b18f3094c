"""
FastAPI dependencies.

Provides the authenticated user, the per-user AI rate limit, the
request-scoped context and the collaborators wired onto app.state.
"""

from dataclasses import dataclass
from typing import Optional

import sentry_sdk
from fastapi import Depends, Request, Response
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.ai_service.utils.logger import get_logger
from app.core.errors import RateLimited, Unauthorized
from app.core.rate_limit import UserRateLimiter, rate_limit_headers
from app.core.security import AuthenticatedUser, user_from_claims, verify_access_token

logger = get_logger(__name__)

security = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class RequestContext:
    """Request-scoped values handed from the HTTP layer to services."""

    user: Optional[AuthenticatedUser]
    ip_address: str = "unknown"
    user_agent: str = "unknown"
    request_id: str = ""
    token: Optional[str] = None


def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> AuthenticatedUser:
    """
    Retrieve the currently authenticated user.

    Raises:
        Unauthorized: If the bearer token is missing, malformed, invalid
            or expired, or carries no usable user id.
    """
    if credentials is None:
        has_header = bool(request.headers.get("Authorization"))
        logger.warning(
            "Missing or malformed Authorization header",
            extra={"path": request.url.path, "header_present": has_header},
        )
        raise Unauthorized(
            "Authorization header must be Bearer token"
            if has_header
            else "Authorization header required"
        )

    try:
        claims = verify_access_token(credentials.credentials)
        user = user_from_claims(claims)
    except ValueError as exc:
        logger.warning("Authentication failed", extra={"path": request.url.path})
        raise Unauthorized("Invalid token", details={"details": str(exc)}) from exc

    request.state.user = user
    request.state.token = credentials.credentials

    sentry_sdk.set_user({"id": str(user.user_id), "email": user.email})

    logger.debug("Authenticated user request", extra={"user_id": str(user.user_id)})
    return user


def get_user_rate_limiter(request: Request) -> UserRateLimiter:
    return request.app.state.user_rate_limiter


def enforce_ai_rate_limit(
    response: Response,
    user: AuthenticatedUser = Depends(get_current_user),
    limiter: UserRateLimiter = Depends(get_user_rate_limiter),
) -> AuthenticatedUser:
    """
    Apply the per-user AI quota after authentication.

    Raises:
        RateLimited: When the user's bucket is empty.
    """
    decision = limiter.check(str(user.user_id))
    headers = rate_limit_headers(decision, limiter.requests_per_minute)

    if not decision.allowed:
        raise RateLimited(
            "Rate limit exceeded. Try again later.",
            details={
                "limit": str(limiter.requests_per_minute),
                "window": "60 seconds",
                "retry_after": headers["Retry-After"],
            },
            headers=headers,
        )

    response.headers.update(headers)
    return user


def build_request_context(request: Request) -> RequestContext:
    return RequestContext(
        user=getattr(request.state, "user", None),
        ip_address=getattr(request.state, "ip_address", "unknown"),
        user_agent=getattr(request.state, "user_agent", "unknown"),
        request_id=getattr(request.state, "request_id", ""),
        token=getattr(request.state, "token", None),
    )


# --------------------------------------------------
# Collaborators
# --------------------------------------------------


def get_summarize_service(request: Request):
    return request.app.state.summarize_service


def get_privacy_service(request: Request):
    return request.app.state.privacy_service
