"""Centralized logging configuration."""
from __future__ import annotations

import logging
from logging.config import dictConfig

from sentinel.core.context import get_correlation_id


class CorrelationIdFilter(logging.Filter):
    """Stamp log records with the active request id or scheduler run id."""

    def filter(self, record: logging.LogRecord) -> bool:  # pragma: no cover - minimal logic
        record.correlation_id = get_correlation_id() or "-"
        return True


def configure_logging(*, log_level: str = "INFO") -> None:
    """Configure application logging once per process."""
    if getattr(configure_logging, "_configured", False):
        return

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {
                    "format": "%(asctime)s | %(levelname)s | %(name)s | %(correlation_id)s | %(message)s",
                }
            },
            "filters": {
                "correlation_id": {
                    "()": "sentinel.core.logging.CorrelationIdFilter",
                }
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                    "level": log_level,
                    "filters": ["correlation_id"],
                }
            },
            "loggers": {
                # APScheduler logs every job execution at INFO.
                "apscheduler": {"level": "WARNING"},
            },
            "root": {
                "handlers": ["console"],
                "level": log_level,
            },
        }
    )

    logging.getLogger(__name__).debug("Logging configured at %s", log_level)
    setattr(configure_logging, "_configured", True)
