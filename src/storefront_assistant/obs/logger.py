"""Logger factory shared by every module.

Usage:
    from storefront_assistant.obs.logger import get_logger
    logger = get_logger(__name__)
"""

from __future__ import annotations

import logging
import sys

from storefront_assistant.config import get_settings

_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _default_level() -> int:
    level = logging.getLevelName(get_settings().LOG_LEVEL.upper())
    return level if isinstance(level, int) else logging.INFO


def get_logger(name: str, level: int | None = None) -> logging.Logger:
    """Return a named logger with a single stdout handler attached."""
    logger = logging.getLogger(name)
    if not logger.handlers:
        resolved = level if level is not None else _default_level()
        logger.setLevel(resolved)

        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(resolved)
        handler.setFormatter(logging.Formatter(fmt=_FORMAT, datefmt=_DATE_FORMAT))
        logger.addHandler(handler)
        logger.propagate = False
    return logger


def preview(text: str, limit: int = 100) -> str:
    """Truncate user text before it reaches a log line or usage record."""
    text = text.replace("\n", " ")
    return text if len(text) <= limit else text[: limit - 3] + "..."
