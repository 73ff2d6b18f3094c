"""
Privacy and consent service.

Stores consent preferences, writes the append-only audit trail and
serves the active privacy policy. Backed by MongoDB.
"""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Tuple
from uuid import UUID

from fastapi import Request
from pymongo import DESCENDING
from pymongo.collection import Collection
from pymongo.errors import PyMongoError

from app.ai_service.utils.logger import get_logger
from app.common.audit_logger import (
    DEFAULT_AUDIT_RETENTION_DAYS,
    AuditAction,
    AuditLogRequest,
)
from app.consent_service.schemas import (
    CONSENT_FIELDS,
    DEFAULT_CONSENT_VERSION,
    AuditLog,
    ConsentResponse,
    ConsentUpdate,
    PrivacyPolicyVersion,
    UserConsent,
)
from app.core.security import user_from_claims, verify_access_token
from app.db import mongodb

logger = get_logger(__name__)

CONSENT_COLLECTION = "user_consent"
AUDIT_COLLECTION = "audit_logs"
POLICY_COLLECTION = "privacy_policy_versions"


class PrivacyStoreError(RuntimeError):
    """Raised when the consent or audit store cannot be reached."""


class PolicyNotFoundError(LookupError):
    """Raised when no active privacy policy version exists."""


def _now() -> datetime:
    return datetime.now(timezone.utc)


class PrivacyService:
    def __init__(
        self,
        get_collection: Callable[[str], Collection] = mongodb.get_collection,
        *,
        allow_user_id_header: bool = False,
        clock: Callable[[], datetime] = _now,
    ) -> None:
        self._get_collection = get_collection
        self.allow_user_id_header = allow_user_id_header
        self._clock = clock

    def _collection(self, name: str) -> Collection:
        try:
            return self._get_collection(name)
        except RuntimeError as exc:
            raise PrivacyStoreError(f"{name} collection unavailable") from exc

    # --------------------------------------------------
    # Consent
    # --------------------------------------------------

    def get_user_consent(self, user_id: str) -> UserConsent:
        """
        Return the stored consent, or privacy-safe defaults when none exists.

        Raises:
            PrivacyStoreError: If the store fails.
        """
        user_id = str(user_id)
        try:
            doc = self._collection(CONSENT_COLLECTION).find_one(
                {"user_id": user_id},
                {"_id": 0},
            )
        except PyMongoError as exc:
            logger.error(
                "Failed to read user consent",
                extra={"user_id": user_id, "error": str(exc)},
            )
            raise PrivacyStoreError("failed to read user consent") from exc

        if not doc:
            now = self._clock()
            return UserConsent(
                user_id=user_id,
                consent_version=DEFAULT_CONSENT_VERSION,
                created_at=now,
                updated_at=now,
            )

        return UserConsent.model_validate(doc)

    def update_user_consent(
        self,
        user_id: str,
        request: ConsentUpdate,
        ip_address: str = "",
        user_agent: str = "",
    ) -> ConsentResponse:
        """
        Apply a partial consent update.

        Raises:
            ValueError: If no consent field is provided.
            PrivacyStoreError: If the store fails.
        """
        user_id = str(user_id)
        changes = request.provided()
        if not changes:
            raise ValueError("no consent fields provided for update")

        current = self.get_user_consent(user_id)
        consent = current.model_copy(update=changes)

        try:
            version = self.get_active_privacy_policy_version().version
        except (PolicyNotFoundError, PrivacyStoreError):
            logger.warning(
                "Active privacy policy unavailable, using default version",
                extra={"user_id": user_id},
            )
            version = DEFAULT_CONSENT_VERSION

        now = self._clock()
        updates = {
            **{name: getattr(consent, name) for name in CONSENT_FIELDS},
            "consent_version": version,
            "updated_at": now,
            "consent_given_at": consent.consent_given_at,
            "consent_withdrawn_at": consent.consent_withdrawn_at,
        }

        first_grant = consent.any_granted() and consent.consent_given_at is None
        if first_grant:
            updates["consent_given_at"] = now
            updates["consent_withdrawn_at"] = None
        elif not consent.any_granted():
            updates["consent_withdrawn_at"] = now

        if ip_address:
            updates["ip_address"] = ip_address
        if user_agent:
            updates["user_agent"] = user_agent

        try:
            self._collection(CONSENT_COLLECTION).update_one(
                {"user_id": user_id},
                {
                    "$set": updates,
                    "$setOnInsert": {"user_id": user_id, "created_at": now},
                },
                upsert=True,
            )
        except PyMongoError as exc:
            logger.error(
                "Failed to persist user consent",
                extra={"user_id": user_id, "error": str(exc)},
            )
            raise PrivacyStoreError("failed to store user consent") from exc

        stored = consent.model_copy(update=updates)

        logger.info(
            "User consent updated",
            extra={"user_id": user_id, "fields": sorted(changes)},
        )

        self.log_action_best_effort(
            AuditLogRequest(
                user_id=user_id,
                action=AuditAction.CONSENT_UPDATED,
                resource_type="user_consent",
                details={
                    **{name: getattr(stored, name) for name in CONSENT_FIELDS},
                    "consent_version": version,
                },
                ip_address=ip_address or None,
                user_agent=user_agent or None,
            )
        )

        if first_grant:
            self.log_action_best_effort(
                AuditLogRequest(
                    user_id=user_id,
                    action=AuditAction.CONSENT_GIVEN,
                    resource_type="user_consent",
                    details={"consent_version": version, "fields": sorted(changes)},
                    ip_address=ip_address or None,
                    user_agent=user_agent or None,
                )
            )

        return ConsentResponse.from_consent(stored)

    def has_ai_processing_consent(self, user_id: str) -> bool:
        return self.get_user_consent(user_id).ai_processing_consent

    def has_data_anonymization_consent(self, user_id: str) -> bool:
        return self.get_user_consent(user_id).data_anonymization_consent

    def revoke_all_consent(
        self,
        user_id: str,
        ip_address: str = "",
        user_agent: str = "",
    ) -> ConsentResponse:
        """
        Withdraw every consent flag (GDPR right to withdraw).

        Raises:
            PrivacyStoreError: If the store fails.
        """
        revoked = self.update_user_consent(
            user_id,
            ConsentUpdate(**{name: False for name in CONSENT_FIELDS}),
            ip_address,
            user_agent,
        )

        self.log_action_best_effort(
            AuditLogRequest(
                user_id=str(user_id),
                action=AuditAction.CONSENT_WITHDRAWN,
                resource_type="user_consent",
                details={"revoked_all": True, "reason": "GDPR withdrawal request"},
                ip_address=ip_address or None,
                user_agent=user_agent or None,
            )
        )
        return revoked

    # --------------------------------------------------
    # Privacy policy
    # --------------------------------------------------

    def get_active_privacy_policy_version(self) -> PrivacyPolicyVersion:
        """
        Raises:
            PolicyNotFoundError: If no active version exists.
            PrivacyStoreError: If the store fails.
        """
        try:
            doc = self._collection(POLICY_COLLECTION).find_one(
                {"is_active": True},
                sort=[("effective_date", DESCENDING)],
            )
        except PyMongoError as exc:
            raise PrivacyStoreError("failed to read privacy policy") from exc

        if not doc:
            raise PolicyNotFoundError("no active privacy policy version")

        object_id = doc.pop("_id", None)
        doc.setdefault("id", str(object_id))
        return PrivacyPolicyVersion.model_validate(doc)

    # --------------------------------------------------
    # Audit trail
    # --------------------------------------------------

    def log_action(self, entry: AuditLogRequest) -> None:
        """
        Append an audit entry.

        Raises:
            PrivacyStoreError: If the insert fails.
        """
        now = self._clock()
        document = {
            "id": str(uuid.uuid4()),
            "user_id": entry.user_id,
            "action": entry.action.value,
            "resource_type": entry.resource_type,
            "resource_id": entry.resource_id,
            "details": entry.details,
            "ip_address": entry.ip_address,
            "user_agent": entry.user_agent,
            "session_id": entry.session_id,
            "created_at": now,
            "expires_at": entry.expires_at
            or now + timedelta(days=DEFAULT_AUDIT_RETENTION_DAYS),
        }

        try:
            self._collection(AUDIT_COLLECTION).insert_one(document)
        except PyMongoError as exc:
            logger.critical(
                "Audit logging failed",
                extra={
                    "action": entry.action.value,
                    "user_id": entry.user_id,
                    "error": str(exc),
                },
            )
            raise PrivacyStoreError("failed to write audit log") from exc

        logger.debug(
            "Audit event logged",
            extra={"action": entry.action.value, "user_id": entry.user_id},
        )

    def log_action_best_effort(self, entry: AuditLogRequest) -> None:
        try:
            self.log_action(entry)
        except PrivacyStoreError:
            logger.error(
                "Failed to write audit entry",
                extra={"action": entry.action.value, "user_id": entry.user_id},
            )

    def _find_logs(self, query: dict, limit: int, offset: int) -> Tuple[List[AuditLog], int]:
        try:
            collection = self._collection(AUDIT_COLLECTION)
            total = collection.count_documents(query)
            cursor = (
                collection.find(query, {"_id": 0})
                .sort("created_at", DESCENDING)
                .skip(offset)
                .limit(limit)
            )
            logs = [AuditLog.model_validate(doc) for doc in cursor]
        except PyMongoError as exc:
            raise PrivacyStoreError("failed to read audit logs") from exc

        return logs, total

    def get_user_audit_logs(
        self,
        user_id: str,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[AuditLog], int]:
        """Return one page of a user's audit trail, newest first, and the total."""
        return self._find_logs({"user_id": str(user_id)}, limit, offset)

    def get_audit_logs_by_action(
        self,
        action: AuditAction,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[AuditLog], int]:
        return self._find_logs({"action": AuditAction(action).value}, limit, offset)

    def cleanup_expired_logs(self) -> int:
        """
        Delete audit entries past their retention.

        Returns:
            int: Number of deleted entries.
        """
        now = self._clock()
        try:
            result = self._collection(AUDIT_COLLECTION).delete_many(
                {"expires_at": {"$lt": now}}
            )
        except PyMongoError as exc:
            raise PrivacyStoreError("failed to clean up audit logs") from exc

        deleted = result.deleted_count
        logger.info("Expired audit logs removed", extra={"deleted": deleted})

        if deleted > 0:
            self.log_action_best_effort(
                AuditLogRequest(
                    action=AuditAction.AUDIT_CLEANUP,
                    resource_type="audit_logs",
                    details={
                        "rows_deleted": deleted,
                        "cleanup_time": now.isoformat(),
                    },
                )
            )
        return deleted

    # --------------------------------------------------
    # Identity
    # --------------------------------------------------

    def extract_user_id_from_request(self, request: Request) -> str:
        """
        Resolve the caller's user id.

        A bearer token is tried first. The X-User-ID header is accepted
        only when ``allow_user_id_header`` is enabled.

        Raises:
            ValueError: If no valid user id can be resolved.
        """
        auth_header = request.headers.get("Authorization", "")
        if auth_header:
            scheme, _, token = auth_header.partition(" ")
            if scheme.lower() != "bearer" or not token:
                raise ValueError("invalid authorization header format")

            return str(user_from_claims(verify_access_token(token)).user_id)

        header_id = request.headers.get("X-User-ID")
        if header_id and self.allow_user_id_header:
            return str(UUID(header_id))

        raise ValueError("no user ID found in request")
