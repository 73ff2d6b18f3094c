"""
Middleware to capture client details for audit logging.
"""

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware


def resolve_client_ip(request: Request) -> str:
    """
    Resolve the originating client IP.

    Priority:
    1. First hop of X-Forwarded-For
    2. X-Real-IP
    3. Socket peer
    """
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        first_hop = forwarded_for.split(",")[0].strip()
        if first_hop:
            return first_hop

    real_ip = request.headers.get("X-Real-IP")
    if real_ip and real_ip.strip():
        return real_ip.strip()

    return request.client.host if request.client else "unknown"


class ClientInfoMiddleware(BaseHTTPMiddleware):
    """
    Captures request metadata for audit logging.

    Attaches IP address and user agent to request state.
    """

    async def dispatch(self, request: Request, call_next):
        request.state.ip_address = resolve_client_ip(request)
        request.state.user_agent = request.headers.get("User-Agent", "unknown")

        return await call_next(request)
