"""
Schemas for user consent management.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_CONSENT_VERSION = "1.0"

CONSENT_FIELDS = (
    "ai_processing_consent",
    "data_anonymization_consent",
    "analytics_consent",
    "marketing_consent",
)


class ConsentUpdate(BaseModel):
    """
    Partial consent update. Omitted fields keep their stored value.
    """

    model_config = ConfigDict(extra="forbid")

    ai_processing_consent: Optional[bool] = None
    data_anonymization_consent: Optional[bool] = None
    analytics_consent: Optional[bool] = None
    marketing_consent: Optional[bool] = None

    def provided(self) -> Dict[str, bool]:
        return self.model_dump(exclude_none=True)


class UserConsent(BaseModel):
    """
    Stored consent record.

    All flags default to False so an unknown user has consented to nothing.
    """

    user_id: str
    ai_processing_consent: bool = False
    data_anonymization_consent: bool = False
    analytics_consent: bool = False
    marketing_consent: bool = False
    consent_version: str = DEFAULT_CONSENT_VERSION
    consent_given_at: Optional[datetime] = None
    consent_withdrawn_at: Optional[datetime] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def any_granted(self) -> bool:
        return any(getattr(self, name) for name in CONSENT_FIELDS)


class ConsentResponse(BaseModel):
    user_id: str
    ai_processing_consent: bool
    data_anonymization_consent: bool
    analytics_consent: bool
    marketing_consent: bool
    consent_version: str
    consent_given_at: Optional[datetime] = None
    consent_withdrawn_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_consent(cls, consent: UserConsent) -> "ConsentResponse":
        return cls.model_validate(consent.model_dump())


class AuditLog(BaseModel):
    id: str
    user_id: Optional[str] = None
    action: str
    resource_type: str
    resource_id: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    session_id: Optional[str] = None
    created_at: datetime
    expires_at: datetime


class Pagination(BaseModel):
    total_count: int
    limit: int
    offset: int
    returned: int
    has_next: bool
    has_prev: bool


class AuditLogsResponse(BaseModel):
    audit_logs: List[AuditLog]
    pagination: Pagination
    user_id: str


class PrivacyPolicyVersion(BaseModel):
    id: str
    version: str
    content: str
    effective_date: datetime
    created_at: Optional[datetime] = None
    is_active: bool = True


class RevokeResponse(BaseModel):
    message: str
    user_id: str
    revoked_at: datetime
    gdpr_compliant: bool = True
