"""
Consent API client.

Handles consent preferences, withdrawal, audit history and the
privacy policy.
"""

from typing import Any, Dict, Optional

from frontend.api.base_client import ApiClient
from frontend.utils.logger import get_logger

logger = get_logger(__name__)

CONSENT_PATH = "/api/v1/ai/consent"


def _client(token: Optional[str], client: Optional[ApiClient]) -> ApiClient:
    return client or ApiClient(token=token)


def get_consent(*, token: str, client: Optional[ApiClient] = None) -> Dict[str, Any]:
    """
    Fetch the user's consent flags.

    Raises:
        ApiError: On request or backend failure.
    """
    logger.info("Fetching user consent")
    return _client(token, client).get(CONSENT_PATH)


def update_consent(
    *,
    token: str,
    consent_data: Dict[str, bool],
    client: Optional[ApiClient] = None,
) -> Dict[str, Any]:
    """
    Update any subset of:
        ai_processing_consent, data_anonymization_consent,
        analytics_consent, marketing_consent

    Raises:
        ApiError: On request or backend failure.
    """
    logger.info(
        "Updating user consent",
        extra={"consent_keys": list(consent_data.keys())},
    )
    return _client(token, client).put(CONSENT_PATH, json_data=consent_data)


def revoke_consent(*, token: str, client: Optional[ApiClient] = None) -> Dict[str, Any]:
    logger.info("Revoking all user consent")
    return _client(token, client).delete(CONSENT_PATH)


def get_audit_logs(
    *,
    token: str,
    limit: int = 50,
    offset: int = 0,
    client: Optional[ApiClient] = None,
) -> Dict[str, Any]:
    return _client(token, client).get(
        f"{CONSENT_PATH}/audit",
        params={"limit": limit, "offset": offset},
    )


def get_policy(*, client: Optional[ApiClient] = None) -> Dict[str, Any]:
    return _client(None, client).get(f"{CONSENT_PATH}/policy")
