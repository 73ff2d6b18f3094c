"""
Conversation summary API client.
"""

from typing import Any, Dict, Optional

from frontend.api.base_client import ApiClient
from frontend.utils.logger import get_logger

logger = get_logger(__name__)

SUMMARIZE_PATH = "/api/v1/ai/summarize"


def summarize(
    *,
    token: str,
    conversation_id: str,
    limit: Optional[int] = None,
    client: Optional[ApiClient] = None,
) -> Dict[str, Any]:
    """
    Request a summary of a conversation's recent messages.

    Raises:
        ApiError: On request or backend failure. ConsentError when the
            user has not granted AI processing consent.
    """
    client = client or ApiClient(token=token)

    payload: Dict[str, Any] = {"conversation_id": str(conversation_id)}
    if limit is not None:
        payload["limit"] = limit

    logger.info(
        "Requesting conversation summary",
        extra={"conversation_id": str(conversation_id), "limit": limit},
    )
    return client.post(SUMMARIZE_PATH, json_data=payload)
