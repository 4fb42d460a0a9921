"""
Abstract storage interface for the audit store.

The watchdog treats the relational engine as opaque: it only needs the
primitive statement API (execute / query_all / query_one), explicit
transactions, handle lifecycle, and a handful of maintenance commands.
Keeping these behind an ABC lets tests substitute in-memory fakes.
"""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Iterator, Optional, Sequence

from auditguard.models.recovery import IndexStatistic

# Tables rebuilt by REINDEX during remediation
AUDIT_TABLES = ("permission_audit", "permission_audit_reviews", "audit_metrics")


class StorageError(Exception):
    """Base exception for all storage operation failures."""

    pass


class StorageBackend(ABC):
    """
    Abstract base class for the live audit store.

    Implementations own exactly one handle to the underlying database file.
    close()/open() are used by remediation to reset the handle and by the
    restore pipeline to swap the file underneath it.
    """

    # =========================================================================
    # Handle lifecycle
    # =========================================================================

    @property
    @abstractmethod
    def path(self) -> Path:
        """Filesystem path of the live database file."""

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """Whether the handle is currently open."""

    @abstractmethod
    def open(self) -> None:
        """
        Open the handle and ensure the schema exists.

        Raises:
            StorageError: If the file cannot be opened as a database
        """

    @abstractmethod
    def close(self) -> None:
        """Close the handle. Closing a closed handle is a no-op."""

    def reopen(self) -> None:
        """Reset the handle (close, then open)."""
        self.close()
        self.open()

    # =========================================================================
    # Statement primitives
    # =========================================================================

    @abstractmethod
    def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        """
        Execute a statement.

        Returns:
            Number of rows changed

        Raises:
            StorageError: If execution fails
        """

    @abstractmethod
    def query_all(self, sql: str, params: Sequence[Any] = ()) -> list[dict]:
        """Run a query and return every row as a dict."""

    @abstractmethod
    def query_one(self, sql: str, params: Sequence[Any] = ()) -> Optional[dict]:
        """Run a query and return the first row, or None."""

    # =========================================================================
    # Transactions
    # =========================================================================

    @abstractmethod
    def begin(self, immediate: bool = False) -> None:
        """Begin a transaction; immediate mode takes the write lock up front."""

    @abstractmethod
    def commit(self) -> None:
        """Commit the open transaction, if any."""

    @abstractmethod
    def rollback(self) -> None:
        """Roll back the open transaction, if any."""

    @contextmanager
    def transaction(self, immediate: bool = False) -> Iterator["StorageBackend"]:
        """
        Run a block inside a transaction.

        Commits on normal exit, rolls back and re-raises on any exception.
        """
        self.begin(immediate=immediate)
        try:
            yield self
        except BaseException:
            self.rollback()
            raise
        self.commit()

    # =========================================================================
    # Structural health
    # =========================================================================

    @abstractmethod
    def integrity_check(self) -> list[str]:
        """
        Run the engine's structural integrity check.

        Returns:
            Messages reported by the engine; ["ok"] means healthy

        Raises:
            StorageError: If the check itself cannot run
        """

    def is_healthy(self) -> bool:
        """True when the integrity check runs and reports exactly ["ok"]."""
        try:
            return self.integrity_check() == ["ok"]
        except StorageError:
            return False

    @abstractmethod
    def index_statistics(self) -> list[IndexStatistic]:
        """Per-index statistics as last collected by analyze(); never refreshes them."""

    @abstractmethod
    def malformed_indexes(self) -> list[str]:
        """Names of catalog index entries that have no definition."""

    @abstractmethod
    def size_bytes(self) -> int:
        """On-disk size of the live database file."""

    # =========================================================================
    # Maintenance
    # =========================================================================

    @abstractmethod
    def analyze(self) -> None:
        """Refresh planner statistics."""

    @abstractmethod
    def optimize(self) -> None:
        """Let the engine apply its own cheap optimizations."""

    @abstractmethod
    def reindex(self, tables: Sequence[str] = AUDIT_TABLES) -> None:
        """Rebuild every index on the given tables."""

    @abstractmethod
    def vacuum(self) -> None:
        """Compact the database file."""

    @abstractmethod
    def archive_records(self, cutoff: datetime) -> int:
        """
        Move audit records older than `cutoff` to the cold table.

        Insert and delete run inside one transaction.

        Returns:
            Number of records moved
        """
