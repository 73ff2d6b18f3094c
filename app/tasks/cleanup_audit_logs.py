"""
Background task to remove audit log entries past their retention.

Run this as a cron job or scheduled task.
"""

from app.ai_service.config import get_settings
from app.ai_service.utils.logger import get_logger
from app.consent_service.service import PrivacyService

logger = get_logger(__name__)


def cleanup_job(service: PrivacyService | None = None) -> int:
    """
    Delete expired audit entries from MongoDB.

    Should be run periodically (e.g., daily).
    """
    service = service or PrivacyService(
        allow_user_id_header=get_settings().ALLOW_USER_ID_HEADER,
    )

    logger.info("Starting audit log cleanup job")

    deleted_count = service.cleanup_expired_logs()

    logger.info(
        "Audit log cleanup completed",
        extra={"deleted_count": deleted_count},
    )
    return deleted_count


if __name__ == "__main__":
    cleanup_job()


# Runs cleanup every day at 03:00
# 0 3 * * * cd /path/to/link-ai-svc && /path/to/venv/bin/python -m app.tasks.cleanup_audit_logs >> /var/log/link_ai_cleanup.log 2>&1
