"""
Logging setup for the import service.

Every module logs through ``logging.getLogger(__name__)``. The import
pipeline (``crm_import.domain.imports``) logs one line per stage and per
failed row, so it can be turned up or down on its own without touching the
HTTP or storage loggers.
"""
from __future__ import annotations

import logging
from logging.config import dictConfig
from typing import Optional

PACKAGE_LOGGER = "crm_import"
PIPELINE_LOGGER = "crm_import.domain.imports"

# Third-party loggers that are noisy at INFO during uploads and batch writes.
QUIET_LOGGERS = ("botocore", "boto3", "s3transfer", "urllib3", "sqlalchemy.engine")

_is_configured = False


def configure_logging(level: Optional[str] = None, pipeline_level: Optional[str] = None) -> None:
    """
    Configure handlers and the package loggers once per process.

    Args:
        level: Log level for the root and ``crm_import`` loggers (default "INFO").
        pipeline_level: Separate level for the import pipeline stages; falls
            back to ``level``.
    """
    global _is_configured

    if _is_configured:
        return

    log_level = (level or "INFO").upper()
    stage_level = (pipeline_level or log_level).upper()

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "standard": {
                    "format": "%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
                    "datefmt": "%Y-%m-%d %H:%M:%S",
                }
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "standard",
                    "level": "DEBUG",
                }
            },
            "root": {
                "handlers": ["console"],
                "level": log_level,
            },
            "loggers": {
                PACKAGE_LOGGER: {"level": log_level},
                PIPELINE_LOGGER: {"level": stage_level},
                **{name: {"level": "WARNING"} for name in QUIET_LOGGERS},
            },
        }
    )

    _is_configured = True
    logging.getLogger(__name__).debug(
        "Logging configured: level=%s, pipeline level=%s", log_level, stage_level
    )
