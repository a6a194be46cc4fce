"""Logging configuration helpers."""

from __future__ import annotations

import logging
import logging.config
from types import MappingProxyType
from typing import Any

from .config import LoggingSettings

# imaplib echoes credentials at DEBUG; httpx logs every token request
NOISY_LOGGERS: tuple[str, ...] = ("imaplib", "httpx", "httpcore")

_FORMATTERS = MappingProxyType(
    {
        "structured": {"format": "{asctime} {levelname} {name} {message}", "style": "{"},
        "plain": {"format": "%(asctime)s %(levelname)s %(name)s %(message)s"},
    }
)


def build_logging_config(settings: LoggingSettings) -> dict[str, Any]:
    """Return the ``dictConfig`` mapping for ``settings``."""
    formatter = _FORMATTERS["structured" if settings.structured else "plain"]
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"default": dict(formatter)},
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "default",
                "level": settings.level,
            },
        },
        "loggers": {name: {"level": "WARNING"} for name in NOISY_LOGGERS},
        "root": {"handlers": ["console"], "level": settings.level},
    }


def configure_logging(settings: LoggingSettings) -> None:
    """Configure application logging according to provided settings."""
    logging.config.dictConfig(build_logging_config(settings))
    logging.getLogger(__name__).debug(
        "Logging configured at %s (%s)",
        settings.level,
        "structured" if settings.structured else "plain",
    )


__all__ = ["NOISY_LOGGERS", "build_logging_config", "configure_logging"]
