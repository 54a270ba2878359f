"""
Logging Configuration
=====================

Structured logging for the capture service. structlog renders events for the
console in development and as JSON in production; the standard library
loggers underneath are wired by ``dictConfig``. Rotating capture and error
logs are written under ``<storage_path>/logs`` outside of tests.
"""

import logging
import logging.config
import sys
from pathlib import Path
from typing import Dict, Any, Optional, TYPE_CHECKING
import structlog
from structlog.types import Processor

from .settings import get_settings

if TYPE_CHECKING:
    from .settings import Settings

LOG_FILE_MAX_BYTES = 10485760  # 10MB
LOG_FILE_BACKUPS = 5

# Third-party loggers that only get through at WARNING and above.
QUIET_LOGGERS = ("playwright", "PIL", "asyncio")


def setup_logging(settings: Optional["Settings"] = None) -> None:
    """
    Configure structlog and the standard library loggers.

    Args:
        settings: Settings to configure from; the global settings when omitted
    """
    settings = settings or get_settings()

    processors: list[Processor] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if settings.environment == "production":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=settings.environment != "testing"))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    config = get_logging_config(settings)
    if writes_log_files(settings):
        log_directory(settings).mkdir(parents=True, exist_ok=True)
    logging.config.dictConfig(config)


def writes_log_files(settings: "Settings") -> bool:
    return settings.environment != "testing"


def log_directory(settings: "Settings") -> Path:
    return settings.storage_path / "logs"


def get_logging_config(settings: "Settings") -> Dict[str, Any]:
    """
    Build the ``dictConfig`` mapping for ``settings``.

    Tests log to the console only. Other environments add a rotating capture
    log and a rotating error log.
    """
    handlers: Dict[str, Any] = {
        "console": {
            "class": "logging.StreamHandler",
            "level": settings.log_level,
            "formatter": "json" if settings.environment == "production" else "standard",
            "stream": sys.stdout,
        },
    }
    if writes_log_files(settings):
        handlers["file"] = _rotating_handler(log_directory(settings) / "brandshot.log", settings.log_level)
        handlers["error_file"] = _rotating_handler(log_directory(settings) / "error.log", "ERROR")

    loggers: Dict[str, Any] = {
        "": {
            "level": settings.log_level,
            "handlers": list(handlers),
            "propagate": False,
        },
        "uvicorn": {
            "level": "INFO",
            "handlers": ["console"],
            "propagate": False,
        },
    }
    for name in QUIET_LOGGERS:
        loggers[name] = {"level": "WARNING", "handlers": ["console"], "propagate": False}

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {
                "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
            "detailed": {
                "format": "%(asctime)s [%(levelname)s] %(name)s:%(lineno)d: %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
            "json": {
                "()": "pythonjsonlogger.json.JsonFormatter",
                "format": "%(asctime)s %(name)s %(levelname)s %(message)s",
            },
        },
        "handlers": handlers,
        "loggers": loggers,
    }


def _rotating_handler(path: Path, level: str) -> Dict[str, Any]:
    return {
        "class": "logging.handlers.RotatingFileHandler",
        "level": level,
        "formatter": "detailed",
        "filename": str(path),
        "maxBytes": LOG_FILE_MAX_BYTES,
        "backupCount": LOG_FILE_BACKUPS,
        "delay": True,
    }


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


setup_logging()
