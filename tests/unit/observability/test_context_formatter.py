import logging

import pytest

from app.ai_service.config import Settings
from app.ai_service.utils import logger as logger_module
from app.ai_service.utils.logger import ContextFormatter, get_logger, set_log_level
from app.main import create_app


def _record(msg="Fetched recent messages", **extra):
    record = logging.LogRecord("app.test", logging.INFO, __file__, 1, msg, (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_extra_fields_are_appended_sorted():
    formatter = ContextFormatter("%(levelname)s %(message)s")

    line = formatter.format(_record(limit=5, conversation_id="c1"))

    assert line == "INFO Fetched recent messages | conversation_id=c1 limit=5"


def test_plain_records_are_unchanged():
    formatter = ContextFormatter("%(levelname)s %(message)s")

    assert formatter.format(_record()) == "INFO Fetched recent messages"


def test_get_logger_does_not_duplicate_handlers():
    first = get_logger("app.tests.handlers")
    second = get_logger("app.tests.handlers")

    assert first is second
    assert len(second.handlers) == 1
    assert second.propagate is False


@pytest.fixture
def restore_level():
    original = logger_module.LOG_LEVEL
    yield
    set_log_level(original)


def test_set_log_level_applies_to_existing_and_new_loggers(restore_level):
    existing = get_logger("app.tests.levels")

    set_log_level("debug")
    later = get_logger("app.tests.levels.later")

    assert existing.level == logging.DEBUG
    assert later.level == logging.DEBUG


def test_unknown_log_level_is_rejected(restore_level):
    with pytest.raises(ValueError):
        set_log_level("chatty")


def test_create_app_applies_configured_log_level(
    restore_level, privacy_service, chat_client, ai_service, summary_cache
):
    create_app(
        Settings(JWT_SECRET="test-jwt-secret", LOG_LEVEL="WARNING"),
        privacy_service=privacy_service,
        chat_client=chat_client,
        ai_service=ai_service,
        summary_cache=summary_cache,
        database_check=lambda: None,
    )

    assert logging.getLogger("app.main").level == logging.WARNING
    assert logging.getLogger("app.ai_service.services.summarize_service").level == logging.WARNING
