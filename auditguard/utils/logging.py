"""
Structured logging configuration using structlog.
Provides process-wide logging plus a bounded buffer of recent error events.
"""

import logging
import sys
import threading
from collections import deque
from datetime import datetime, timezone
from typing import Any, Optional

import structlog
from structlog.types import EventDict, Processor

from auditguard.config import Settings, get_settings

ERROR_METHODS = {"error", "exception", "critical"}


class ErrorLogBuffer:
    """
    Bounded in-memory record of the most recent error-level log events.

    Installed as a structlog processor by configure_logging(); the recovery
    orchestrator scans it for recurring error patterns.
    """

    def __init__(self, maxlen: int = 500):
        self._records: deque[dict] = deque(maxlen=maxlen)
        self._lock = threading.Lock()

    def __call__(self, logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
        if method_name in ERROR_METHODS:
            record = {
                "event": str(event_dict.get("event", "")),
                "error": event_dict.get("error"),
                "logger": event_dict.get("logger"),
                "recorded_at": datetime.now(timezone.utc),
            }
            with self._lock:
                self._records.append(record)
        return event_dict

    def recent(self, since: Optional[datetime] = None) -> list[dict]:
        """Return buffered records, optionally only those at or after `since`."""
        with self._lock:
            records = list(self._records)
        if since is None:
            return records
        return [r for r in records if r["recorded_at"] >= since]

    def clear(self) -> None:
        with self._lock:
            self._records.clear()

    def __len__(self) -> int:
        return len(self._records)


def add_severity(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Add severity level for structured logging."""
    event_dict["severity"] = method_name.upper()
    return event_dict


def configure_logging(
    settings: Optional[Settings] = None,
    error_buffer: Optional[ErrorLogBuffer] = None,
) -> None:
    """
    Configure structured logging for the application.
    Uses JSON format in production, console format in development.

    Args:
        settings: Settings to read level/format from (defaults to get_settings())
        error_buffer: Optional buffer that receives every error-level event
    """
    settings = settings or get_settings()

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
    )

    if settings.log_format == "json" and not settings.dev_mode:
        renderer: Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        add_severity,
    ]
    if error_buffer is not None:
        processors.append(error_buffer)
    processors += [structlog.processors.UnicodeDecoder(), renderer]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = __name__) -> structlog.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)
