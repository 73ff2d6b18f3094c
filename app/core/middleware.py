"""
Cross-cutting HTTP middleware.

Registered so that panic recovery wraps request logging, which in turn
wraps authentication and rate limiting (FastAPI dependencies) and the
route handler.
"""

import time
import uuid

import sentry_sdk
from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from app.ai_service.utils.logger import get_logger
from app.core.errors import error_body

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


def _user_fields(request: Request) -> dict:
    user = getattr(request.state, "user", None)
    if user is None:
        return {}
    return {"user_id": str(user.user_id), "user_email": user.email}


class PanicRecoveryMiddleware(BaseHTTPMiddleware):
    """
    Converts any exception escaping the stack into a generic 500.
    """

    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except Exception as exc:
            request_id = getattr(request.state, "request_id", "")

            logger.exception(
                "Unhandled exception recovered",
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "request_id": request_id,
                    **_user_fields(request),
                },
            )
            sentry_sdk.capture_exception(exc)

            return JSONResponse(
                status_code=500,
                content=error_body(
                    "INTERNAL_ERROR",
                    "Internal server error",
                    {"request_id": request_id},
                ),
                headers={REQUEST_ID_HEADER: request_id} if request_id else None,
            )


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Logs every request with status, duration and caller identity.

    INFO below 400, WARNING for 4xx, ERROR for 5xx.
    """

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        request.state.request_id = request_id
        start = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception:
            logger.error(
                "HTTP request failed",
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "status": 500,
                    "duration_ms": round((time.perf_counter() - start) * 1000, 2),
                    "request_id": request_id,
                    **_user_fields(request),
                },
            )
            raise

        response.headers[REQUEST_ID_HEADER] = request_id

        fields = {
            "method": request.method,
            "path": request.url.path,
            "status": response.status_code,
            "duration_ms": round((time.perf_counter() - start) * 1000, 2),
            "remote_addr": getattr(request.state, "ip_address", None),
            "request_id": request_id,
            **_user_fields(request),
        }

        if response.status_code >= 500:
            logger.error("HTTP request completed", extra=fields)
        elif response.status_code >= 400:
            logger.warning("HTTP request completed", extra=fields)
        else:
            logger.info("HTTP request completed", extra=fields)

        return response
