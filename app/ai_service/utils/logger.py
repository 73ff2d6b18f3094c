"""
Centralized logging utility.

Every module logs through ``get_logger(__name__)``. Fields passed via
``extra=`` are rendered as ``key=value`` pairs after the message, so
request ids, user ids and timings stay greppable.
"""

import logging
import os
import sys
from typing import Optional, Set

# Default until the app applies Settings.LOG_LEVEL at startup
LOG_LEVEL = os.getenv("LINK_AI_LOG_LEVEL", "INFO").upper()

_configured: Set[str] = set()

# Attributes every LogRecord carries; anything else came from extra=
_RESERVED = set(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {
    "message",
    "asctime",
    "taskName",
}


class ContextFormatter(logging.Formatter):
    """Append ``extra`` fields to the formatted line."""

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)

        fields = {
            key: value
            for key, value in vars(record).items()
            if key not in _RESERVED and not key.startswith("_")
        }
        if not fields:
            return line

        context = " ".join(f"{key}={value}" for key, value in sorted(fields.items()))
        if "\n" in line:
            head, _, tail = line.partition("\n")
            return f"{head} | {context}\n{tail}"
        return f"{line} | {context}"


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """
    Create or retrieve a configured logger instance.

    Args:
        name (Optional[str]): Logger name (usually __name__).

    Returns:
        logging.Logger: Configured logger instance.
    """
    logger = logging.getLogger(name)
    logger.setLevel(LOG_LEVEL)
    _configured.add(logger.name)

    # Uvicorn reloads import modules more than once
    if logger.handlers:
        return logger

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        ContextFormatter(
            fmt="%(asctime)s | %(levelname)-8s | ai-svc | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    logger.addHandler(handler)

    logger.propagate = False

    return logger


def set_log_level(level: str) -> None:
    """
    Apply ``level`` to every logger handed out so far and to later ones.

    Raises:
        ValueError: If ``level`` is not a known logging level name.
    """
    global LOG_LEVEL

    level = level.upper()
    if not isinstance(logging.getLevelName(level), int):
        raise ValueError(f"Unknown log level: {level}")

    LOG_LEVEL = level
    for name in _configured:
        logging.getLogger(name).setLevel(level)
