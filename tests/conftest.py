"""
Pytest configuration and shared fixtures for the AuditGuard test suite.

Every test gets its own temporary store, backup directory and key file;
nothing touches the working directory. Fakes stand in for the process-level
controls (memory ratio, restart) so remediation paths can be driven
deterministically.
"""

import asyncio
import os
import tempfile
import threading
import uuid as _uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest

# Set testing environment BEFORE importing the app
_test_root = os.path.join(tempfile.gettempdir(), f"auditguard_test_{_uuid.uuid4().hex[:8]}")
os.environ["TESTING"] = "true"
os.environ["DB_PATH"] = os.path.join(_test_root, "data", "audit.sqlite")
os.environ["BACKUP_DIR"] = os.path.join(_test_root, "backups")
os.environ["BACKUP_KEY_PATH"] = os.path.join(_test_root, "keys", "backup.key")
os.environ["ENABLE_WATCHDOG"] = "false"


from auditguard.config import Settings
from auditguard.engine.backup.codec import FernetBackupCodec, generate_key_file
from auditguard.engine.backup.pipeline import BackupPipeline
from auditguard.engine.backup.restore import RestorePipeline
from auditguard.engine.metrics.sampler import MetricSampler
from auditguard.engine.monitors.health_probe import HealthProbe
from auditguard.engine.monitors.optimizer import StoreOptimizer
from auditguard.engine.recovery.error_patterns import ErrorPatternAnalyzer
from auditguard.engine.recovery.orchestrator import RecoveryOrchestrator
from auditguard.models.notifications import Notification
from auditguard.storage.sqlite_storage import SQLiteStorage, to_db_timestamp
from auditguard.utils.logging import ErrorLogBuffer


# ---------------------------------------------------------------------------
# Factories reused across the test suites
# ---------------------------------------------------------------------------


def make_settings(tmp_path, **overrides) -> Settings:
    """Settings rooted in a temporary directory, watchdog timers off."""
    defaults = dict(
        db_path=str(tmp_path / "data" / "audit.sqlite"),
        backup_dir=str(tmp_path / "backups"),
        backup_key_path=str(tmp_path / "keys" / "backup.key"),
        enable_watchdog=False,
        step_timeout_seconds=30,
        testing=True,
    )
    defaults.update(overrides)
    return Settings(**defaults)


def make_audit_row(
    storage: SQLiteStorage,
    timestamp: datetime,
    actor_email: str = "admin@example.com",
    target_user_email: str = "user@example.com",
    **overrides,
) -> None:
    """Insert one permission_audit row."""
    row = dict(
        timestamp=to_db_timestamp(timestamp),
        actor_id="actor-1",
        actor_email=actor_email,
        target_user_email=target_user_email,
        action_type="grant",
        resource="license",
        permission="admin",
        previous_value=None,
        new_value="true",
        reason="test",
    )
    row.update(overrides)
    columns = ", ".join(row)
    placeholders = ", ".join("?" for _ in row)
    storage.execute(
        f"INSERT INTO permission_audit ({columns}) VALUES ({placeholders})",
        list(row.values()),
    )


def count_rows(storage: SQLiteStorage, table: str) -> int:
    return storage.query_one(f"SELECT COUNT(*) AS n FROM {table}")["n"]


def running_loop_thread() -> str:
    """'loop' when called on an event loop thread, 'worker' otherwise."""
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return "worker"
    return "loop"


class FixedClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: Optional[datetime] = None):
        self.now = now or datetime.now(timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class RecordingSink:
    """Notification sink that keeps every report."""

    def __init__(self):
        self.sent: list[Notification] = []

    def send(self, notification: Notification) -> None:
        self.sent.append(notification)


class FailingSink:
    def send(self, notification: Notification) -> None:
        raise ConnectionError("mail relay unreachable")


class FakeRuntime:
    """
    Stand-in for RuntimeControls.

    memory_ratio() returns `ratio`; restart_process() only records the call.
    `block` makes clear_caches() wait until `release` is set.
    """

    def __init__(self, ratio: float = 0.10):
        self.ratio = ratio
        self.calls: list[str] = []
        self.fail_clear = False
        self.block = False
        self.release = threading.Event()

    def clear_caches(self) -> list[str]:
        self.calls.append("clear_caches")
        if self.block:
            self.release.wait(timeout=5)
        if self.fail_clear:
            raise RuntimeError("failed to clear caches: query_cache")
        return ["query_cache"]

    def collect_garbage(self) -> int:
        self.calls.append("collect_garbage")
        return 0

    def memory_ratio(self) -> float:
        return self.ratio

    def restart_process(self) -> None:
        self.calls.append("restart_process")


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path):
    return make_settings(tmp_path)


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def storage(settings):
    store = SQLiteStorage(settings.db_path)
    yield store
    store.close()


@pytest.fixture
def sampler(storage, clock):
    return MetricSampler(storage, clock=clock)


@pytest.fixture
def runtime():
    return FakeRuntime()


@pytest.fixture
def probe(storage, sampler, runtime, settings):
    return HealthProbe(storage, sampler, runtime, settings)


@pytest.fixture
def key_path(settings):
    return generate_key_file(settings.key_path)


@pytest.fixture
def codec(settings, key_path):
    return FernetBackupCodec(key_path, backup_dir=settings.backup_path)


@pytest.fixture
def backups(storage, codec, settings, clock):
    return BackupPipeline(
        storage,
        codec,
        settings.backup_path,
        retention_days=settings.backup_retention_days,
        clock=clock,
    )


@pytest.fixture
def restore(storage, backups, codec):
    return RestorePipeline(storage, backups, codec)


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def error_log():
    return ErrorLogBuffer()


@pytest.fixture
def orchestrator(storage, probe, runtime, sampler, backups, restore, error_log, sink, settings, clock):
    return RecoveryOrchestrator(
        storage=storage,
        probe=probe,
        runtime=runtime,
        optimizer=StoreOptimizer(storage, sampler),
        backups=backups,
        restore=restore,
        error_patterns=ErrorPatternAnalyzer(error_log, min_occurrences=3),
        notifier=sink,
        settings=settings,
        clock=clock,
    )
