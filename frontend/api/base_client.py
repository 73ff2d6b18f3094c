"""
Generic AI service HTTP client.

Adds auth headers, sends the request and maps failures onto the
ApiError hierarchy keyed by HTTP status.
"""

from typing import Any, Dict, Optional

import requests
from requests import RequestException

from frontend.config import settings
from frontend.utils.logger import get_logger

logger = get_logger(__name__)


class ApiError(RuntimeError):
    """Raised when an AI service call fails."""

    def __init__(
        self,
        message: str,
        *,
        status: Optional[int] = None,
        code: str = "UNKNOWN_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status = status
        self.code = code
        self.details = details or {}


class AuthError(ApiError):
    """401: missing or invalid token."""


class ConsentError(ApiError):
    """403: the user has not granted the required consent."""


class NotFoundError(ApiError):
    """404."""


class RateLimitError(ApiError):
    """429: per-user quota exhausted."""

    def __init__(self, message: str, *, retry_after: Optional[int] = None, **kwargs) -> None:
        super().__init__(message, **kwargs)
        self.retry_after = retry_after


class NetworkError(ApiError):
    """The request never produced an HTTP response."""


_ERRORS_BY_STATUS = {
    401: AuthError,
    403: ConsentError,
    404: NotFoundError,
    429: RateLimitError,
}


def _error_from_response(response: requests.Response) -> ApiError:
    try:
        body = response.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}

    message = body.get("message") or response.reason or "Request failed"
    kwargs: Dict[str, Any] = {
        "status": response.status_code,
        "code": body.get("code") or body.get("error") or f"HTTP_{response.status_code}",
        "details": body.get("details") or {},
    }

    error_cls = _ERRORS_BY_STATUS.get(response.status_code, ApiError)
    if error_cls is RateLimitError:
        retry_after = response.headers.get("Retry-After")
        kwargs["retry_after"] = int(retry_after) if retry_after and retry_after.isdigit() else None

    return error_cls(message, **kwargs)


class ApiClient:
    def __init__(
        self,
        *,
        token: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = (base_url or settings.API_BASE_URL).rstrip("/")
        self.token = token
        self.timeout = timeout or settings.REQUEST_TIMEOUT
        self._session = session or requests.Session()

    def request(
        self,
        method: str,
        path: str,
        *,
        json_data: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Perform a request and return the decoded JSON body.

        Raises:
            ApiError: Or one of its subclasses on any failure.
        """
        url = f"{self.base_url}{path}"
        headers = {"Accept": "application/json"}
        if json_data is not None:
            headers["Content-Type"] = "application/json"
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        try:
            response = self._session.request(
                method,
                url,
                json=json_data,
                params=params,
                headers=headers,
                timeout=self.timeout,
            )
        except RequestException as exc:
            logger.exception("HTTP request failed", extra={"url": url})
            raise NetworkError("Unable to reach AI service", code="NETWORK_ERROR") from exc

        if response.status_code >= 400:
            error = _error_from_response(response)
            logger.warning(
                "AI service returned an error",
                extra={"url": url, "status": error.status, "code": error.code},
            )
            raise error

        try:
            return response.json()
        except ValueError as exc:
            logger.exception("Invalid JSON response", extra={"url": url})
            raise ApiError(
                "Invalid response received from server",
                status=response.status_code,
                code="INVALID_RESPONSE",
            ) from exc

    def get(self, path: str, **kwargs) -> Dict[str, Any]:
        return self.request("GET", path, **kwargs)

    def post(self, path: str, **kwargs) -> Dict[str, Any]:
        return self.request("POST", path, **kwargs)

    def put(self, path: str, **kwargs) -> Dict[str, Any]:
        return self.request("PUT", path, **kwargs)

    def delete(self, path: str, **kwargs) -> Dict[str, Any]:
        return self.request("DELETE", path, **kwargs)
