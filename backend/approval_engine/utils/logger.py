"""JSON log lines carrying the request correlation id and engine identifiers"""
import json
import logging
import os
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from typing import Any, Dict, Optional

from ..config.settings import settings


correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

# Passed as logger.info(..., extra={...}) and copied into the JSON line
EXTRA_FIELDS = (
    "instance_id",
    "record_id",
    "node_id",
    "actor_id",
    "action",
    "status",
    "definition_id",
    "delegation_id",
    "request_type",
    "notification_id",
)

_MAX_LOG_BYTES = 10 * 1024 * 1024
_LOG_BACKUPS = 5

_QUIET_LOGGERS = {
    "uvicorn.access": logging.WARNING,
    "httpx": logging.WARNING,
    "pymongo": logging.WARNING,
    "apscheduler": logging.WARNING,
}


class JsonFormatter(logging.Formatter):

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        correlation_id = correlation_id_var.get()
        if correlation_id:
            entry["correlation_id"] = correlation_id

        entry.update({
            field: getattr(record, field)
            for field in EXTRA_FIELDS
            if hasattr(record, field)
        })

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


def _rotating_file(path: str, formatter: logging.Formatter, level: int = logging.NOTSET) -> RotatingFileHandler:
    handler = RotatingFileHandler(path, maxBytes=_MAX_LOG_BYTES, backupCount=_LOG_BACKUPS, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_logging() -> None:
    """
    Route every logger through the JSON formatter.

    Lines go to stdout and to <logs_path>/engine.log; ERROR and above are
    also written to <logs_path>/errors.log. Safe to call more than once.
    """
    os.makedirs(settings.logs_path, exist_ok=True)
    formatter = JsonFormatter()

    root = logging.getLogger()
    root.setLevel(logging.getLevelName(settings.log_level.upper()))
    root.handlers.clear()

    stdout = logging.StreamHandler(sys.stdout)
    stdout.setFormatter(formatter)
    root.addHandler(stdout)
    root.addHandler(_rotating_file(os.path.join(settings.logs_path, "engine.log"), formatter))
    root.addHandler(_rotating_file(os.path.join(settings.logs_path, "errors.log"), formatter, logging.ERROR))

    for name, level in _QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(level)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def set_correlation_id(correlation_id: str) -> None:
    correlation_id_var.set(correlation_id)


def get_correlation_id() -> Optional[str]:
    return correlation_id_var.get()
