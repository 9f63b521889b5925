"""
Logging Configuration - Structured logging with pipeline run context
"""
import logging
import json
import sys
from datetime import datetime, timezone
from typing import Optional
from contextvars import ContextVar

from clipper.core.settings import settings

# Context variables for pipeline run tracking
current_run_id: ContextVar[Optional[str]] = ContextVar('current_run_id', default=None)
current_action: ContextVar[Optional[str]] = ContextVar('current_action', default=None)
current_week_key: ContextVar[Optional[str]] = ContextVar('current_week_key', default=None)


class StructuredFormatter(logging.Formatter):
    """
    JSON-structured log formatter with run context.
    """
    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        # Add run context if available
        run_id = current_run_id.get()
        action = current_action.get()
        week_key = current_week_key.get()

        if run_id:
            log_data["run_id"] = run_id
        if action:
            log_data["action"] = action
        if week_key:
            log_data["week_key"] = week_key

        # Add exception info if present
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Add extra fields
        if hasattr(record, 'extra_fields'):
            log_data.update(record.extra_fields)

        return json.dumps(log_data, default=str)


def setup_logging(level: str = "INFO", structured: bool = True):
    """
    Configure application logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        structured: Use JSON format (True) or human-readable (False)
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(getattr(logging, level.upper()))

    if structured:
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            '%(asctime)s | %(levelname)-8s | %(name)s | %(message)s'
        ))

    root_logger.addHandler(handler)


def get_logger(name: str) -> logging.Logger:
    """Get a logger with the given name."""
    return logging.getLogger(name)


class RunContext:
    """
    Context manager for tagging log records with the current pipeline run.

    Usage:
        with RunContext(run_id="abc123", action="payout", week_key="2026-W42"):
            logger.info("Processing...")  # Structured output carries all three
    """
    def __init__(
        self,
        run_id: Optional[str] = None,
        action: Optional[str] = None,
        week_key: Optional[str] = None,
    ):
        self.run_id = run_id
        self.action = action
        self.week_key = week_key
        self._tokens = []

    def __enter__(self):
        if self.run_id:
            self._tokens.append((current_run_id, current_run_id.set(self.run_id)))
        if self.action:
            self._tokens.append((current_action, current_action.set(self.action)))
        if self.week_key:
            self._tokens.append((current_week_key, current_week_key.set(self.week_key)))
        return self

    def __exit__(self, *args):
        for var, token in reversed(self._tokens):
            var.reset(token)
        self._tokens = []


# Initialize logging on import
setup_logging(level=settings.log_level, structured=settings.log_structured)
