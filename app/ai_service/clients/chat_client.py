"""
Chat service API client.

Fetches recent conversation messages for summarization.
"""

import time
from datetime import datetime
from typing import List, Optional

import requests
from pydantic import BaseModel, ValidationError
from requests import RequestException

from app.ai_service.config import Settings
from app.ai_service.utils.logger import get_logger

logger = get_logger(__name__)


class ChatMessage(BaseModel):
    id: str
    conversation_id: Optional[str] = None
    user_id: Optional[str] = None
    content: str
    message_type: str = "text"
    created_at: Optional[datetime] = None


class _MessagesPage(BaseModel):
    messages: List[ChatMessage] = []
    total_count: int = 0
    has_more: bool = False


class ChatServiceError(RuntimeError):
    """Raised when messages cannot be fetched from the chat service."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class _RetryableError(Exception):
    pass


class ChatServiceClient:
    """
    Retries connection errors and 5xx responses with exponential backoff.
    4xx responses and malformed bodies fail immediately.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 10.0,
        max_retries: int = 3,
        retry_delay: float = 0.1,
        backoff: float = 2.0,
        session: Optional[requests.Session] = None,
        sleep=time.sleep,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max(0, max_retries)
        self.retry_delay = retry_delay
        self.backoff = backoff
        self._session = session or requests.Session()
        self._sleep = sleep

    @classmethod
    def from_settings(cls, settings: Settings) -> "ChatServiceClient":
        return cls(
            settings.CHAT_SERVICE_URL,
            timeout=settings.CHAT_SERVICE_TIMEOUT,
            max_retries=settings.CHAT_SERVICE_MAX_RETRIES,
            retry_delay=settings.CHAT_SERVICE_RETRY_DELAY,
            backoff=settings.CHAT_SERVICE_RETRY_BACKOFF,
        )

    def _get_once(self, url: str, params: dict, headers: dict) -> dict:
        try:
            response = self._session.get(
                url,
                params=params,
                headers=headers,
                timeout=self.timeout,
            )
        except RequestException as exc:
            raise _RetryableError(str(exc)) from exc

        if response.status_code >= 500:
            raise _RetryableError(f"HTTP {response.status_code}")

        if response.status_code >= 400:
            raise ChatServiceError(
                f"Chat service rejected request: HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as exc:
            raise ChatServiceError("Invalid JSON from chat service") from exc

    def get_recent_messages(
        self,
        conversation_id,
        limit: int,
        token: Optional[str] = None,
    ) -> List[ChatMessage]:
        """
        Fetch up to ``limit`` recent messages of a conversation.

        Raises:
            ChatServiceError: On rejection, malformed data, or when retries
                are exhausted.
        """
        url = f"{self.base_url}/api/v1/chat/conversations/{conversation_id}/messages"
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        delay = self.retry_delay
        attempt = 0

        while True:
            try:
                payload = self._get_once(url, {"limit": limit}, headers)
                break
            except _RetryableError as exc:
                if attempt >= self.max_retries:
                    logger.error(
                        "Chat service unavailable",
                        extra={
                            "conversation_id": str(conversation_id),
                            "attempts": attempt + 1,
                            "error": str(exc),
                        },
                    )
                    raise ChatServiceError(
                        f"Chat service unavailable: {exc}"
                    ) from exc

                logger.warning(
                    "Retrying chat service request",
                    extra={"attempt": attempt + 1, "delay": delay, "error": str(exc)},
                )
                self._sleep(delay)
                delay *= self.backoff
                attempt += 1

        try:
            page = _MessagesPage.model_validate(payload)
        except ValidationError as exc:
            raise ChatServiceError("Malformed messages payload") from exc

        logger.info(
            "Fetched recent messages",
            extra={
                "conversation_id": str(conversation_id),
                "limit": limit,
                "messages_count": len(page.messages),
            },
        )
        return page.messages

    def health(self) -> None:
        """
        Raises:
            ChatServiceError: If the chat service health endpoint fails.
        """
        try:
            response = self._session.get(f"{self.base_url}/health", timeout=self.timeout)
        except RequestException as exc:
            raise ChatServiceError(f"health check failed: {exc}") from exc

        if response.status_code >= 400:
            raise ChatServiceError(
                f"health check failed with status {response.status_code}",
                status_code=response.status_code,
            )

    def close(self) -> None:
        self._session.close()
