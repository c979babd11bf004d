"""Logging configuration for the stepflow engine.

Each workflow run tags its log records with ``run_id`` and ``workflow``. The
tags live in a context variable, so concurrent runs on one event loop keep
their own values.
"""

import logging
import sys
import json
import traceback
from contextvars import ContextVar
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from typing import Optional, Dict
from pathlib import Path


RUN_FIELDS = ("run_id", "workflow")

# Extra attributes copied into structured output when a record carries them
EXTRA_FIELDS = ("component", "operation", "attempt", "max_attempts", "error_type")

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(module)s:%(funcName)s:%(lineno)d] - %(message)s"

_run_context: ContextVar[Dict[str, Optional[str]]] = ContextVar("stepflow_run_context", default={})


class StructuredFormatter(logging.Formatter):
    """Formatter emitting one JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for field in RUN_FIELDS + EXTRA_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log_entry[field] = value

        if record.exc_info and record.exc_info[0]:
            log_entry["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": traceback.format_exception(*record.exc_info)
            }

        return json.dumps(log_entry, default=str)


class RunContextFilter(logging.Filter):
    """Filter stamping the current run's identifiers onto log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        context = _run_context.get()
        for field in RUN_FIELDS:
            if not hasattr(record, field):
                setattr(record, field, context.get(field))
        return True


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    log_format: Optional[str] = None,
    structured: bool = False,
    max_size: int = 10 * 1024 * 1024,
    backup_count: int = 5
) -> logging.Logger:
    """
    Configure logging for the engine, the API server and the CLI.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional file path for log output
        log_format: Custom format string for plain-text output
        structured: Emit JSON records carrying run identifiers
        max_size: Maximum log file size in bytes before rotation
        backup_count: Number of rotated files to keep

    Returns:
        Root logger instance
    """
    level = str(getattr(level, "value", level)).upper()

    if structured:
        formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter(fmt=log_format or DEFAULT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(RotatingFileHandler(log_file, maxBytes=max_size, backupCount=backup_count))

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level))
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    run_filter = RunContextFilter()
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(run_filter)
        root_logger.addHandler(handler)

    # Quiet chatty libraries
    for name in ("uvicorn.access", "sqlalchemy.engine", "sqlalchemy.pool", "urllib3"):
        logging.getLogger(name).setLevel(logging.WARNING)

    return root_logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance for the given name."""
    return logging.getLogger(name)


def set_logging_context(run_id: Optional[str] = None, workflow: Optional[str] = None):
    """Tag subsequent log records in this task with a run's identifiers."""
    _run_context.set({"run_id": run_id, "workflow": workflow})


def clear_logging_context():
    _run_context.set({})


class ErrorRecoveryLogger:
    """Logger for retry attempts around flaky operations."""

    def __init__(self, component_name: str):
        self.logger = get_logger(f"stepflow.recovery.{component_name}")
        self.component_name = component_name

    def log_recovery_attempt(self, operation: str, error: Exception, attempt: int, max_attempts: int):
        self.logger.warning(
            f"Recovery attempt {attempt}/{max_attempts} for {operation}: {error}",
            extra={
                "component": self.component_name,
                "operation": operation,
                "attempt": attempt,
                "max_attempts": max_attempts,
                "error_type": type(error).__name__,
            }
        )

    def log_recovery_success(self, operation: str, attempts_used: int):
        self.logger.info(
            f"Recovered from {operation} after {attempts_used} attempts",
            extra={"component": self.component_name, "operation": operation, "attempt": attempts_used}
        )

    def log_recovery_failure(self, operation: str, final_error: Exception, attempts_used: int):
        self.logger.error(
            f"Failed to recover from {operation} after {attempts_used} attempts: {final_error}",
            extra={
                "component": self.component_name,
                "operation": operation,
                "attempt": attempts_used,
                "error_type": type(final_error).__name__,
            }
        )
