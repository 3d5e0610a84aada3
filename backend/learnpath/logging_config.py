import logging
import os
from logging.config import dictConfig
from typing import Any, Dict

DEFAULT_LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def _env_flag(name: str) -> bool:
    return os.getenv(name, "0").strip().lower() in {"1", "true", "yes"}


def build_logging_config() -> Dict[str, Any]:
    """Return the dictConfig mapping for the current LEARNPATH_* environment.

    ``LEARNPATH_TELEMETRY_LOG_LEVEL`` silences or raises the TELEMETRY lines
    independently of the rest of the package.
    """
    level = os.getenv("LEARNPATH_LOG_LEVEL", "INFO").upper()
    telemetry_level = os.getenv("LEARNPATH_TELEMETRY_LOG_LEVEL", level).upper()

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {"format": DEFAULT_LOG_FORMAT},
        },
        "handlers": {
            "default": {
                "class": "logging.StreamHandler",
                "formatter": "default",
            },
        },
        "loggers": {
            "learnpath.telemetry": {
                "level": telemetry_level,
            },
            "sqlalchemy.engine": {
                "level": "INFO" if _env_flag("LEARNPATH_DEBUG_SQL") else "WARNING",
            },
        },
        "root": {
            "handlers": ["default"],
            "level": level,
        },
    }


def configure_logging() -> None:
    dictConfig(build_logging_config())
    if _env_flag("LEARNPATH_DEBUG_HTTP"):
        logging.getLogger("uvicorn.access").setLevel(logging.DEBUG)
