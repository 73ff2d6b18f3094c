"""
API error taxonomy and FastAPI exception handlers.

Every error leaves the service as:
    {"error": CODE, "message": str, "code": CODE, "details": {str: str}}
"""

from typing import Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded

from app.ai_service.utils.logger import get_logger

logger = get_logger(__name__)


class APIError(Exception):
    """
    Error surfaced to the client with a stable machine-readable code.
    """

    status_code: int = 500
    default_code: str = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        details: Optional[Dict[str, str]] = None,
        headers: Optional[Dict[str, str]] = None,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}
        self.headers = headers or {}
        if status_code is not None:
            self.status_code = status_code

    def to_body(self) -> dict:
        return error_body(self.code, self.message, self.details)


class ValidationFailed(APIError):
    status_code = 400
    default_code = "INVALID_REQUEST"


class Unauthorized(APIError):
    status_code = 401
    default_code = "UNAUTHORIZED"


class ConsentRequired(APIError):
    status_code = 403
    default_code = "CONSENT_REQUIRED"


class NotFound(APIError):
    status_code = 404
    default_code = "NOT_FOUND"


class RateLimited(APIError):
    status_code = 429
    default_code = "RATE_LIMIT_EXCEEDED"


class InternalError(APIError):
    status_code = 500
    default_code = "INTERNAL_ERROR"


def error_body(
    code: str,
    message: str,
    details: Optional[Dict[str, str]] = None,
) -> dict:
    return {
        "error": code,
        "message": message,
        "code": code,
        "details": details or {},
    }


async def api_error_handler(request: Request, exc: APIError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_body(),
        headers=exc.headers or None,
    )


async def validation_error_handler(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    first = exc.errors()[0] if exc.errors() else {}
    logger.warning(
        "Request validation failed",
        extra={"path": request.url.path, "error": first.get("msg")},
    )
    return JSONResponse(
        status_code=400,
        content=error_body(
            "INVALID_REQUEST",
            "Invalid request",
            {"details": str(first.get("msg", "invalid request"))},
        ),
    )


async def global_rate_limit_handler(
    request: Request,
    exc: RateLimitExceeded,
) -> JSONResponse:
    logger.warning(
        "Global rate limit exceeded",
        extra={"path": request.url.path},
    )
    return JSONResponse(
        status_code=429,
        content=error_body(
            "RATE_LIMIT_EXCEEDED",
            "Too many requests. Please try again later.",
            {"limit": str(exc.detail)},
        ),
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(APIError, api_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(RateLimitExceeded, global_rate_limit_handler)
