"""
Logging for the AI service client.

Kept separate from the service logger so the client can be installed
and used without importing the service package.
"""

import logging
import os

LOG_LEVEL = os.getenv("LINK_AI_CLIENT_LOG_LEVEL", "WARNING").upper()

_STANDARD = set(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {
    "message",
    "asctime",
    "taskName",
}


class _ExtraFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        extras = [
            f"{key}={value}"
            for key, value in sorted(vars(record).items())
            if key not in _STANDARD
        ]
        return f"{line} | {' '.join(extras)}" if extras else line


def get_logger(name: str) -> logging.Logger:
    logger = logging.getLogger(name)
    logger.setLevel(LOG_LEVEL)

    if logger.handlers:
        return logger

    handler = logging.StreamHandler()
    handler.setFormatter(
        _ExtraFormatter("%(asctime)s | %(levelname)s | ai-client | %(name)s | %(message)s")
    )
    logger.addHandler(handler)
    logger.propagate = False

    return logger
