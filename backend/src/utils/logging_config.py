"""
Logging for the XSCard events backend.

Four named loggers under "xscard.": api, services, jobs, db. Context goes
through extra={...} (job_name, instance_id, registration_guid, ...) and is
kept as fields in production JSON files and appended to console lines in
development.

Environment Variables:
    XSCARD_ENV: "production" writes rotating JSON files, anything else logs
                to stdout
    XSCARD_LOG_LEVEL: DEBUG/INFO/WARNING/ERROR/CRITICAL (default: INFO)
    XSCARD_LOG_DIR: Directory for production log files (default: ./logs)
"""

import json
import logging
import logging.handlers
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional


LOGGER_NAMES = ("api", "services", "jobs", "db")

# Attributes present on every LogRecord; anything else came from extra={...}
_RESERVED_RECORD_ATTRS = set(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


def _extra_fields(record: logging.LogRecord) -> Dict[str, Any]:
    return {
        key: value for key, value in record.__dict__.items()
        if key not in _RESERVED_RECORD_ATTRS
    }


class JSONFormatter(logging.Formatter):
    """One JSON object per line: level, logger, message, origin and extra fields."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key, value in _extra_fields(record).items():
            log_data.setdefault(key, value)

        return json.dumps(log_data, default=str)


class ConsoleFormatter(logging.Formatter):
    """
    Development format.

    Example:
        [2026-03-02 10:30:45] INFO - xscard.jobs - Job past_cleanup finished (job_name=past_cleanup, processed=3)
    """

    def __init__(self):
        super().__init__(
            fmt="[%(asctime)s] %(levelname)s - %(name)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        )

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        extra = _extra_fields(record)
        if not extra:
            return line
        context = ", ".join(f"{key}={value}" for key, value in extra.items())
        return f"{line} ({context})"


def _get_log_level() -> int:
    level_str = os.environ.get("XSCARD_LOG_LEVEL", "INFO").upper()
    return getattr(logging, level_str, logging.INFO)


def _is_production() -> bool:
    return os.environ.get("XSCARD_ENV", "development").lower() == "production"


def _build_handler(logger_name: str, level: int) -> logging.Handler:
    if _is_production():
        log_dir = Path(os.environ.get("XSCARD_LOG_DIR", "logs"))
        log_dir.mkdir(parents=True, exist_ok=True)
        handler = logging.handlers.RotatingFileHandler(
            log_dir / f"{logger_name}.log",
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=5,
            encoding="utf-8"
        )
        handler.setFormatter(JSONFormatter())
    else:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(ConsoleFormatter())
    handler.setLevel(level)
    return handler


def configure_logging() -> Dict[str, logging.Logger]:
    """
    (Re)build the four xscard loggers from the environment.

    Returns:
        Mapping of short name (api, services, jobs, db) to Logger
    """
    level = _get_log_level()
    loggers = {}

    for logger_name in LOGGER_NAMES:
        logger = logging.getLogger(f"xscard.{logger_name}")
        logger.setLevel(level)
        logger.propagate = False  # Don't propagate to root logger
        logger.handlers.clear()
        logger.addHandler(_build_handler(logger_name, level))
        loggers[logger_name] = logger

    return loggers


# Singleton logger instances
_loggers: Optional[Dict[str, logging.Logger]] = None


def get_logger(name: str) -> logging.Logger:
    """
    Get one of the xscard loggers, configuring logging on first use.

    Raises:
        ValueError: If name is not api, services, jobs or db
    """
    global _loggers

    if _loggers is None:
        _loggers = configure_logging()

    if name not in _loggers:
        raise ValueError(
            f"Unknown logger name: {name}. "
            f"Valid names: {', '.join(_loggers.keys())}"
        )

    return _loggers[name]


def init_logging() -> Dict[str, logging.Logger]:
    """Reconfigure logging at process start (API lifespan, CLI)."""
    global _loggers
    _loggers = configure_logging()
    return _loggers
