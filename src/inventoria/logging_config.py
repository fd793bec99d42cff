"""Logging configuration shared by the API and the management commands."""
from __future__ import annotations

import logging.config
import sys
from typing import Any

from .config import Settings, get_settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def build_logging_config(settings: Settings) -> dict[str, Any]:
    """Return a :func:`logging.config.dictConfig` mapping for ``settings``."""

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "simple": {"format": LOG_FORMAT},
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": settings.log_level,
                "formatter": "simple",
                "stream": sys.stdout,
            },
        },
        "loggers": {
            "inventoria": {
                "level": settings.log_level,
                "handlers": ["console"],
                "propagate": False,
            },
            "sqlalchemy.engine": {
                "level": "INFO" if settings.echo_sql else "WARNING",
                "handlers": [],
                "propagate": True,
            },
        },
    }


def setup_logging(settings: Settings | None = None) -> None:
    """Configure the ``inventoria`` logger hierarchy."""

    logging.config.dictConfig(build_logging_config(settings or get_settings()))


__all__ = ["build_logging_config", "setup_logging"]
