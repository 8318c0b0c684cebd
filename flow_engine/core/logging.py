"""Logging configuration for the flow engine."""

import contextvars
import json
import logging
import sys
import traceback
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional

# Context fields of the run executing in the current task
_run_context: contextvars.ContextVar = contextvars.ContextVar("flow_engine_run_context", default={})

_RUN_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s%(run_suffix)s"


class StructuredFormatter(logging.Formatter):
    """Formats each record as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}:{record.funcName}:{record.lineno}",
        }

        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": traceback.format_exception(*record.exc_info),
            }

        entry.update(getattr(record, "extra_fields", {}))
        return json.dumps(entry, default=str)


class RunFormatter(logging.Formatter):
    """Plain text formatter that appends the run and node a record belongs to."""

    def format(self, record: logging.LogRecord) -> str:
        fields = getattr(record, "extra_fields", {})
        tags = [str(fields[key]) for key in ("execution_id", "node_id") if fields.get(key)]
        record.run_suffix = f" [{' '.join(tags)}]" if tags else ""
        return super().format(record)


class RunContextFilter(logging.Filter):
    """Copies the current run context into every record's extra fields.

    Fields passed explicitly through log_with_context take precedence.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        fields = getattr(record, "extra_fields", None)
        if fields is None:
            fields = record.extra_fields = {}
        for key, value in _run_context.get().items():
            fields.setdefault(key, value)
        return True


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    log_format: Optional[str] = None,
    structured: bool = False,
    max_size: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 5
) -> logging.Logger:
    """
    Configure logging for the flow engine.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional file path for log output, rotated by size
        log_format: Format string for plain text output; ``%(run_suffix)s``
            expands to the run and node tags
        structured: Emit one JSON object per line instead of plain text
        max_size: Maximum log file size in bytes before rotation
        backup_count: Number of rotated files to keep

    Returns:
        Root logger instance
    """
    if structured:
        formatter: logging.Formatter = StructuredFormatter()
    else:
        fmt = log_format or DEFAULT_FORMAT
        if "%(run_suffix)s" not in fmt:
            fmt += "%(run_suffix)s"
        formatter = RunFormatter(fmt=fmt, datefmt="%Y-%m-%d %H:%M:%S")

    context_filter = RunContextFilter()
    handlers = [logging.StreamHandler(sys.stdout)]

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(RotatingFileHandler(log_file, maxBytes=max_size, backupCount=backup_count))

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(context_filter)
        root_logger.addHandler(handler)

    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("flow_engine").setLevel(logging.DEBUG if level.upper() == "DEBUG" else logging.INFO)

    return root_logger


def setup_logging_from_config(config) -> logging.Logger:
    """Configure logging from an EngineConfig."""
    return setup_logging(
        level=config.log_level.value,
        log_file=config.log_file,
        log_format=config.log_format,
        structured=config.structured_logging,
        max_size=config.log_max_size,
        backup_count=config.log_backup_count,
    )


def to_python_level(level: Any) -> int:
    """Map a run log level ("debug", "info", "warn", "error") to a logging level."""
    return _RUN_LEVELS.get(str(getattr(level, "value", level)).lower(), logging.INFO)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def set_logging_context(**kwargs) -> contextvars.Token:
    """Add fields to the run context of the current task.

    Returns:
        Token that restores the previous context when passed to reset_logging_context
    """
    return _run_context.set({**_run_context.get(), **kwargs})


def reset_logging_context(token: contextvars.Token):
    """Restore the run context that was current before set_logging_context."""
    _run_context.reset(token)


def clear_logging_context():
    """Drop every run context field of the current task."""
    _run_context.set({})


def get_logging_context() -> Dict[str, Any]:
    return dict(_run_context.get())


def log_with_context(logger: logging.Logger, level: int, message: str, **context):
    """Log a message with per-record fields; fields set to None are left out."""
    extra = {"extra_fields": {key: value for key, value in context.items() if value is not None}}
    logger.log(level, message, extra=extra)
