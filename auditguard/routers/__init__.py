"""API routers for the operator endpoints."""

from auditguard.routers import backups, metrics, system

__all__ = [
    "backups",
    "metrics",
    "system",
]
