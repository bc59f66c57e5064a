"""
Logging Configuration

Stdout logging for the docintel API and its pipeline services. One line
per event (``timestamp | level | logger | message``) so container log
collectors can split fields without a JSON formatter.

Levels:
    - ``docintel.*`` follows ``LOG_LEVEL``.
    - Provider and server libraries (uvicorn, SQLAlchemy, httpx, openai,
      sentence-transformers) follow ``LIBRARY_LOG_LEVELS`` so that SQL
      echo or per-request HTTP lines can be turned on without flooding
      the application log.
"""

from __future__ import annotations

import sys
from logging.config import dictConfig
from typing import Any

from docintel.core.config import Settings, settings

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def build_logging_config(config: Settings = settings) -> dict[str, Any]:
    """``dictConfig`` payload for the given settings."""
    app_level = config.LOG_LEVEL.upper()

    loggers: dict[str, dict[str, Any]] = {
        name: {"level": level.upper(), "handlers": ["console"], "propagate": False}
        for name, level in config.LIBRARY_LOG_LEVELS.items()
    }
    loggers["docintel"] = {"level": app_level, "handlers": ["console"], "propagate": False}

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"default": {"format": LOG_FORMAT, "datefmt": DATE_FORMAT}},
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "stream": sys.stdout,
                "formatter": "default",
            },
        },
        "root": {"level": app_level, "handlers": ["console"]},
        "loggers": loggers,
    }


def setup_logging(config: Settings = settings) -> None:
    """
    Apply the logging configuration.

    Call once from the application lifespan, before the first request.
    """
    dictConfig(build_logging_config(config))
