"""
Audit store layer.

The live store is an embedded SQLite database accessed only through
StorageBackend, so the watchdog never depends on engine internals.
"""

from .base import AUDIT_TABLES, StorageBackend, StorageError
from .sqlite_storage import SQLiteStorage, from_db_timestamp, to_db_timestamp

__all__ = [
    "AUDIT_TABLES",
    "SQLiteStorage",
    "StorageBackend",
    "StorageError",
    "from_db_timestamp",
    "to_db_timestamp",
]
