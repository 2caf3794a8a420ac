from __future__ import annotations

import datetime as dt
import json
import logging
import os
import sys
import uuid
from logging.handlers import RotatingFileHandler
from typing import Any

from loguru import logger as loguru_logger

UTC = dt.UTC

# Attributes every LogRecord carries; anything else came in through ``extra``.
_STANDARD_FIELDS = frozenset(
    {
        "args",
        "msg",
        "name",
        "levelno",
        "levelname",
        "pathname",
        "filename",
        "module",
        "exc_info",
        "exc_text",
        "stack_info",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "taskName",
        "getMessage",
        "message",
    }
)

_PERFORMANCE_FIELDS = frozenset({"latency_ms", "duration_ms", "batch_size", "event_count"})
_SYNC_FIELDS = frozenset({"sync_version", "current_version", "last_sync_version", "client_id"})

_NOISY_LOGGERS = ("uvicorn.access", "peewee", "httpx", "httpcore")


class EnhancedJsonFormatter(logging.Formatter):
    """JSON formatter that groups ``extra`` fields by concern."""

    def __init__(self, include_location: bool = True, include_process_info: bool = True):
        super().__init__()
        self.include_location = include_location
        self.include_process_info = include_process_info
        self.hostname = os.uname().nodename if hasattr(os, "uname") else "unknown"

    def format(self, record: logging.LogRecord) -> str:
        base: dict[str, Any] = {
            "timestamp": dt.datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "hostname": self.hostname,
        }

        if self.include_location:
            base.update(
                {
                    "module": record.module,
                    "function": record.funcName,
                    "line": record.lineno,
                }
            )

        if self.include_process_info:
            base.update(
                {
                    "process": record.process,
                    "thread_name": getattr(record, "threadName", "MainThread"),
                }
            )

        if record.exc_info:
            base["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": self.formatException(record.exc_info),
            }

        extra_fields: dict[str, Any] = {}
        performance_fields: dict[str, Any] = {}
        sync_fields: dict[str, Any] = {}

        for key, value in record.__dict__.items():
            if key.startswith("_") or key in _STANDARD_FIELDS or key in base:
                continue
            if key in ("correlation_id", "user_id", "request_id"):
                continue
            if key in _PERFORMANCE_FIELDS:
                performance_fields[key] = value
            elif key in _SYNC_FIELDS:
                sync_fields[key] = value
            else:
                extra_fields[key] = value

        if performance_fields:
            base["performance"] = performance_fields
        if sync_fields:
            base["sync"] = sync_fields
        if extra_fields:
            base["extra"] = extra_fields

        for key in ("correlation_id", "request_id", "user_id"):
            if hasattr(record, key):
                base[key] = getattr(record, key)

        return json.dumps(
            base, ensure_ascii=False, default=self._json_serializer, separators=(",", ":")
        )

    def _json_serializer(self, obj: Any) -> str:
        if hasattr(obj, "__dict__"):
            return f"<{obj.__class__.__name__}>"
        return str(obj)


class InterceptHandler(logging.Handler):
    """Forward stdlib records (ours, uvicorn's, peewee's) into loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        level: int | str
        try:
            level = loguru_logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        extra = {
            key: value
            for key, value in record.__dict__.items()
            if not key.startswith("_") and key not in _STANDARD_FIELDS
        }
        loguru_logger.bind(**extra).opt(depth=6, exception=record.exc_info).log(
            level, record.getMessage()
        )


def setup_json_logging(
    level: str = "INFO",
    include_location: bool = True,
    include_process_info: bool = True,
    use_loguru: bool = True,
    log_file: str | None = None,
    max_file_size: str = "100 MB",
    retention: str = "30 days",
) -> None:
    """Configure structured JSON logging.

    With ``use_loguru`` every stdlib logger is routed through loguru's
    serialized sinks; otherwise the root logger gets ``EnhancedJsonFormatter``
    handlers directly.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        include_location: Include module/function/line in stdlib JSON records
        include_process_info: Include process/thread in stdlib JSON records
        use_loguru: Route logging through loguru sinks
        log_file: Optional log file path
        max_file_size: Rotation size for the loguru file sink
        retention: Retention period for the loguru file sink
    """
    lvl = getattr(logging, level.upper(), logging.INFO)
    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(lvl)

    if use_loguru:
        loguru_logger.remove()
        loguru_logger.add(
            sys.stdout,
            level=level.upper(),
            serialize=True,
            enqueue=True,
            backtrace=True,
            diagnose=False,
        )
        if log_file:
            loguru_logger.add(
                log_file,
                level=level.upper(),
                serialize=True,
                rotation=max_file_size,
                retention=retention,
                compression="gz",
                enqueue=True,
            )
        root.addHandler(InterceptHandler())
    else:
        formatter = EnhancedJsonFormatter(
            include_location=include_location, include_process_info=include_process_info
        )
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(formatter)
        root.addHandler(console_handler)
        if log_file:
            file_handler = RotatingFileHandler(
                log_file,
                maxBytes=100 * 1024 * 1024,
                backupCount=5,
            )
            file_handler.setFormatter(formatter)
            root.addHandler(file_handler)

    for noisy_logger in _NOISY_LOGGERS:
        logging.getLogger(noisy_logger).setLevel(max(lvl, logging.WARNING))

    logging.getLogger(__name__).info(
        "logging_initialized",
        extra={"level": level.upper(), "use_loguru": use_loguru, "log_file": log_file},
    )


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance by name.

    Args:
        name: Logger name, typically __name__ of the calling module

    Returns:
        Logger instance for the given name
    """
    return logging.getLogger(name)


def generate_correlation_id() -> str:
    """Generate a short correlation ID for tracing a request or connection across logs."""
    return uuid.uuid4().hex[:12]


__all__ = [
    "EnhancedJsonFormatter",
    "InterceptHandler",
    "generate_correlation_id",
    "get_logger",
    "setup_json_logging",
]
