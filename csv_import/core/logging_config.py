"""
Logging setup for import jobs.

Import runs can last for hours across several jobs, so besides the console
handler the log can also be appended to a file that survives the process.
"""
from __future__ import annotations

import logging
from logging.config import dictConfig
from typing import Any, Dict, Optional


_is_configured = False

# Libraries that log every request/statement at INFO or DEBUG.
NOISY_LOGGERS = ("urllib3", "sqlalchemy.engine")


def configure_logging(level: Optional[str] = None, log_file: Optional[str] = None) -> None:
    """
    Configure the root and csv_import loggers once per process.

    Args:
        level: Log level name (e.g., "DEBUG", "INFO"); defaults to INFO.
        log_file: Optional path; when set, records are also appended there.
    """
    global _is_configured

    if _is_configured:
        return

    log_level = (level or "INFO").upper()
    handlers: Dict[str, Dict[str, Any]] = {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "standard",
            "level": log_level,
        }
    }
    if log_file:
        handlers["file"] = {
            "class": "logging.FileHandler",
            "formatter": "standard",
            "level": log_level,
            "filename": log_file,
            "encoding": "utf-8",
        }

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
            "handlers": handlers,
            "root": {
                "handlers": list(handlers),
                "level": log_level,
            },
            "loggers": {
                name: {"level": "WARNING"} for name in NOISY_LOGGERS
            },
        }
    )

    logging.getLogger("csv_import").setLevel(log_level)

    _is_configured = True
