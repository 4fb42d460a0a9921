"""AuditGuard: self-healing watchdog for the embedded audit store."""

__version__ = "0.1.0"
