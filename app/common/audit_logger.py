"""
Audit log vocabulary.

Audit entries are append-only records kept for GDPR/CCPA review.
They are written through PrivacyService.log_action.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

# 7 years
DEFAULT_AUDIT_RETENTION_DAYS = 7 * 365


class AuditAction(str, Enum):
    """Auditable actions."""

    # Consent
    CONSENT_GIVEN = "CONSENT_GIVEN"
    CONSENT_WITHDRAWN = "CONSENT_WITHDRAWN"
    CONSENT_UPDATED = "CONSENT_UPDATED"

    # Data handling
    DATA_ANONYMIZED = "DATA_ANONYMIZED"
    DATA_ACCESSED = "DATA_ACCESSED"

    # AI
    MESSAGES_SUMMARIZED = "MESSAGES_SUMMARIZED"

    # Maintenance
    AUDIT_CLEANUP = "AUDIT_CLEANUP"


class AuditLogRequest(BaseModel):
    """
    A single audit entry to be written.

    ``expires_at`` defaults to the retention window when left unset.
    """

    action: AuditAction
    resource_type: str
    user_id: Optional[str] = None
    resource_id: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    session_id: Optional[str] = None
    expires_at: Optional[datetime] = None
