"""Utility modules for logging and common helpers."""

from auditguard.utils.logging import ErrorLogBuffer, configure_logging, get_logger

__all__ = ["ErrorLogBuffer", "configure_logging", "get_logger"]
