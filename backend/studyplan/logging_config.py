import logging
import os
from logging.config import dictConfig
from typing import Any, Dict, Optional

DEFAULT_LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
TELEMETRY_LOG_FORMAT = "%(asctime)s %(message)s"

# Environment switch -> loggers raised to DEBUG when the switch is "1".
DEBUG_SWITCHES = {
    "STUDYPLAN_DEBUG_ENGINE": ("studyplan.schedule_synthesizer", "studyplan.backlog_rescheduler"),
    "STUDYPLAN_DEBUG_STORE": ("studyplan.performance_store", "studyplan.adaptive_scoring"),
    "STUDYPLAN_DEBUG_HTTP": ("uvicorn.access",),
}


def build_logging_config(level: str) -> Dict[str, Any]:
    """dictConfig payload: one console handler, telemetry lines without the logger prefix."""
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {"format": DEFAULT_LOG_FORMAT},
            "telemetry": {"format": TELEMETRY_LOG_FORMAT},
        },
        "handlers": {
            "default": {
                "class": "logging.StreamHandler",
                "formatter": "default",
            },
            "telemetry": {
                "class": "logging.StreamHandler",
                "formatter": "telemetry",
            },
        },
        "loggers": {
            "studyplan.telemetry": {
                "handlers": ["telemetry"],
                "level": level,
                "propagate": False,
            },
        },
        "root": {
            "handlers": ["default"],
            "level": level,
        },
    }


def configure_logging(level: Optional[str] = None) -> None:
    """Configure planner logging from ``STUDYPLAN_LOG_LEVEL`` and the debug switches."""
    resolved = (level or os.getenv("STUDYPLAN_LOG_LEVEL", "INFO")).upper()
    dictConfig(build_logging_config(resolved))

    for switch, logger_names in DEBUG_SWITCHES.items():
        if os.getenv(switch, "0") != "1":
            continue
        for name in logger_names:
            logging.getLogger(name).setLevel(logging.DEBUG)
