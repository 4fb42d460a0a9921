"""
SQLite storage implementation for the audit store.

Owns the single process-wide handle to the embedded database file and the
audit schema (hot audit table, cold archive table, reviews, metric samples).

Key features:
- One lock-guarded connection shared by the event loop and worker threads
- Explicit transactions (autocommit connection, BEGIN/COMMIT issued by hand)
- Rollback-journal mode so a copied file is always a consistent snapshot
- Idempotent schema creation on every open
"""

import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator, Optional, Sequence

import structlog

from auditguard.models.recovery import IndexStatistic

from .base import AUDIT_TABLES, StorageBackend, StorageError

logger = structlog.get_logger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS permission_audit (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        timestamp TEXT NOT NULL,
        actor_id TEXT NOT NULL,
        actor_email TEXT NOT NULL,
        target_user_email TEXT NOT NULL,
        action_type TEXT NOT NULL,
        resource TEXT NOT NULL,
        permission TEXT NOT NULL,
        previous_value TEXT,
        new_value TEXT,
        reason TEXT,
        ip_address TEXT,
        user_agent TEXT,
        success INTEGER DEFAULT 1,
        additional_info TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_permission_audit_timestamp ON permission_audit(timestamp)",
    "CREATE INDEX IF NOT EXISTS idx_permission_audit_actor ON permission_audit(actor_email)",
    "CREATE INDEX IF NOT EXISTS idx_permission_audit_target ON permission_audit(target_user_email)",
    """
    CREATE TABLE IF NOT EXISTS permission_audit_archive (
        id INTEGER PRIMARY KEY,
        timestamp TEXT NOT NULL,
        actor_id TEXT NOT NULL,
        actor_email TEXT NOT NULL,
        target_user_email TEXT NOT NULL,
        action_type TEXT NOT NULL,
        resource TEXT NOT NULL,
        permission TEXT NOT NULL,
        previous_value TEXT,
        new_value TEXT,
        reason TEXT,
        ip_address TEXT,
        user_agent TEXT,
        success INTEGER DEFAULT 1,
        additional_info TEXT
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_permission_audit_archive_timestamp
    ON permission_audit_archive(timestamp)
    """,
    """
    CREATE TABLE IF NOT EXISTS permission_audit_reviews (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        audit_id INTEGER NOT NULL,
        reviewer_email TEXT NOT NULL,
        decision TEXT NOT NULL,
        comment TEXT,
        reviewed_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_permission_audit_reviews_audit ON permission_audit_reviews(audit_id)",
    """
    CREATE TABLE IF NOT EXISTS audit_metrics (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        timestamp TEXT NOT NULL,
        metric_name TEXT NOT NULL,
        metric_value REAL NOT NULL,
        metric_labels TEXT
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_audit_metrics_name_timestamp
    ON audit_metrics(metric_name, timestamp)
    """,
)


def to_db_timestamp(value: datetime) -> str:
    """Render a datetime as the sortable UTC text stored in the database."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def from_db_timestamp(value: str) -> datetime:
    """Parse a stored timestamp back into an aware UTC datetime."""
    return datetime.strptime(value, TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)


class SQLiteStorage(StorageBackend):
    """
    SQLite implementation of the storage backend.

    The connection runs in autocommit mode (`isolation_level=None`) so that
    BEGIN / BEGIN IMMEDIATE / COMMIT are issued explicitly. All access goes
    through a re-entrant lock, which lets transaction() hold the connection
    for the duration of a block while worker threads wait.

    Attributes:
        db_path: Path to the database file
        initialize_schema: Whether open() creates the audit schema
    """

    def __init__(self, db_path: str | Path, initialize_schema: bool = True, connect: bool = True):
        """
        Initialize SQLite storage.

        A store that cannot be opened is still constructed (and logged) so
        that the watchdog can detect and remediate it.

        Args:
            db_path: Path to the database file
            initialize_schema: Create audit tables and indexes on open
            connect: Open the handle immediately
        """
        self.db_path = Path(db_path)
        self.initialize_schema = initialize_schema
        self._lock = threading.RLock()
        self._conn: Optional[sqlite3.Connection] = None

        if connect:
            try:
                self.open()
            except StorageError as e:
                logger.error("sqlite_open_failed", db_path=str(self.db_path), error=str(e))

    # =========================================================================
    # Handle lifecycle
    # =========================================================================

    @property
    def path(self) -> Path:
        return self.db_path

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    def open(self) -> None:
        with self._lock:
            if self._conn is not None:
                return
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = None
            try:
                conn = sqlite3.connect(
                    str(self.db_path),
                    isolation_level=None,
                    check_same_thread=False,
                    timeout=30,
                )
                conn.row_factory = sqlite3.Row
                conn.execute("PRAGMA journal_mode = DELETE")
                conn.execute("PRAGMA synchronous = NORMAL")
                if self.initialize_schema:
                    for statement in _SCHEMA:
                        conn.execute(statement)
            except sqlite3.Error as e:
                if conn is not None:
                    conn.close()
                raise StorageError(f"Failed to open {self.db_path}: {e}") from e

            self._conn = conn
            logger.debug("sqlite_opened", db_path=str(self.db_path))

    def close(self) -> None:
        with self._lock:
            if self._conn is None:
                return
            try:
                if self._conn.in_transaction:
                    self._conn.execute("ROLLBACK")
                self._conn.close()
            except sqlite3.Error as e:
                logger.warning("sqlite_close_failed", db_path=str(self.db_path), error=str(e))
            finally:
                self._conn = None
            logger.debug("sqlite_closed", db_path=str(self.db_path))

    @contextmanager
    def _connection(self, operation: str) -> Iterator[sqlite3.Connection]:
        """
        Yield the open connection under the lock.

        Raises:
            StorageError: If the handle is closed or the operation fails
        """
        with self._lock:
            if self._conn is None:
                raise StorageError(f"{operation}: store is closed")
            try:
                yield self._conn
            except sqlite3.Error as e:
                raise StorageError(f"{operation} failed: {e}") from e

    # =========================================================================
    # Statement primitives
    # =========================================================================

    def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        with self._connection("execute") as conn:
            cursor = conn.execute(sql, tuple(params))
            return cursor.rowcount

    def query_all(self, sql: str, params: Sequence[Any] = ()) -> list[dict]:
        with self._connection("query_all") as conn:
            return [dict(row) for row in conn.execute(sql, tuple(params)).fetchall()]

    def query_one(self, sql: str, params: Sequence[Any] = ()) -> Optional[dict]:
        with self._connection("query_one") as conn:
            row = conn.execute(sql, tuple(params)).fetchone()
            return dict(row) if row is not None else None

    # =========================================================================
    # Transactions
    # =========================================================================

    @property
    def in_transaction(self) -> bool:
        conn = self._conn
        return conn is not None and conn.in_transaction

    def begin(self, immediate: bool = False) -> None:
        with self._connection("begin") as conn:
            conn.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")

    def commit(self) -> None:
        with self._connection("commit") as conn:
            if conn.in_transaction:
                conn.execute("COMMIT")

    def rollback(self) -> None:
        with self._lock:
            if self._conn is None or not self._conn.in_transaction:
                return
            try:
                self._conn.execute("ROLLBACK")
            except sqlite3.Error as e:
                logger.warning("sqlite_rollback_failed", error=str(e))

    @contextmanager
    def transaction(self, immediate: bool = False) -> Iterator["SQLiteStorage"]:
        # Hold the lock for the whole block so no other thread's statement
        # lands inside this transaction.
        with self._lock:
            with super().transaction(immediate=immediate) as storage:
                yield storage

    # =========================================================================
    # Structural health
    # =========================================================================

    def integrity_check(self) -> list[str]:
        rows = self.query_all("PRAGMA integrity_check")
        return [str(next(iter(row.values()))) for row in rows]

    def index_statistics(self) -> list[IndexStatistic]:
        """
        Statistics as of the last ANALYZE. Read-only: refreshing them is left
        to the remediation and optimization steps.
        """
        with self._connection("index_statistics") as conn:
            try:
                rows = conn.execute(
                    "SELECT tbl, idx, stat FROM sqlite_stat1 WHERE idx IS NOT NULL"
                ).fetchall()
            except sqlite3.OperationalError:
                # sqlite_stat1 only exists once ANALYZE has run
                return []

        stats = []
        for row in rows:
            parsed = _parse_stat(row["stat"])
            if parsed is None:
                continue
            entries, avg_seek = parsed
            stats.append(
                IndexStatistic(
                    table=row["tbl"],
                    index=row["idx"],
                    idx_entries=entries,
                    avg_seek_time=avg_seek,
                )
            )
        return stats

    def malformed_indexes(self) -> list[str]:
        rows = self.query_all(
            """
            SELECT name FROM sqlite_master
            WHERE type = 'index' AND sql IS NULL
              AND name NOT LIKE 'sqlite_autoindex_%'
            """
        )
        return [row["name"] for row in rows]

    def size_bytes(self) -> int:
        try:
            return self.db_path.stat().st_size
        except FileNotFoundError:
            return 0

    # =========================================================================
    # Maintenance
    # =========================================================================

    def analyze(self) -> None:
        self.execute("ANALYZE")

    def optimize(self) -> None:
        self.execute("PRAGMA optimize")

    def reindex(self, tables: Sequence[str] = AUDIT_TABLES) -> None:
        for table in tables:
            if not table.isidentifier():
                raise StorageError(f"reindex: invalid table name {table!r}")
            self.execute(f"REINDEX {table}")
        logger.info("sqlite_reindexed", tables=list(tables))

    def vacuum(self) -> None:
        self.execute("VACUUM")

    def archive_records(self, cutoff: datetime) -> int:
        cutoff_ts = to_db_timestamp(cutoff)
        with self.transaction():
            self.execute(
                """
                INSERT INTO permission_audit_archive
                SELECT * FROM permission_audit WHERE timestamp < ?
                """,
                (cutoff_ts,),
            )
            moved = self.execute("DELETE FROM permission_audit WHERE timestamp < ?", (cutoff_ts,))
        logger.info("audit_records_archived", cutoff=cutoff_ts, moved=moved)
        return moved


def _parse_stat(stat: Optional[str]) -> Optional[tuple[int, float]]:
    """
    Parse a sqlite_stat1 `stat` column.

    The column is "N A1 A2 ..." where N is the number of index entries and
    Ai the average number of entries sharing the first i key columns; A1 is
    the number of entries a single-key seek walks through.
    """
    if not stat:
        return None
    numbers = []
    for token in stat.split():
        if not token.isdigit():
            break
        numbers.append(int(token))
    if not numbers:
        return None
    entries = numbers[0]
    avg_seek = float(numbers[1]) if len(numbers) > 1 else 0.0
    return entries, avg_seek
