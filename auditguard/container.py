"""
Composition root.

Builds every watchdog service exactly once per process (or per test) and
wires them together explicitly. Nothing here is a module-level singleton;
the FastAPI lifespan and the operator scripts each call build_services().
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

import structlog

from auditguard.config import Settings, get_settings
from auditguard.engine.backup.codec import BackupCodec, FernetBackupCodec
from auditguard.engine.backup.pipeline import BackupPipeline
from auditguard.engine.backup.restore import RestorePipeline
from auditguard.engine.metrics.sampler import MetricSampler
from auditguard.engine.monitors.health_probe import HealthProbe
from auditguard.engine.monitors.optimizer import StoreOptimizer
from auditguard.engine.recovery.error_patterns import ErrorPatternAnalyzer
from auditguard.engine.recovery.orchestrator import RecoveryOrchestrator
from auditguard.engine.runtime import RuntimeControls
from auditguard.engine.watchdog import Watchdog
from auditguard.notifications import LoggingNotificationSink, NotificationSink
from auditguard.storage.base import StorageBackend
from auditguard.storage.sqlite_storage import SQLiteStorage
from auditguard.utils.logging import ErrorLogBuffer

logger = structlog.get_logger()


@dataclass
class Services:
    """Every long-lived service of one watchdog process."""

    settings: Settings
    storage: StorageBackend
    sampler: MetricSampler
    runtime: RuntimeControls
    probe: HealthProbe
    optimizer: StoreOptimizer
    codec: BackupCodec
    backups: BackupPipeline
    restore: RestorePipeline
    error_log: ErrorLogBuffer
    error_patterns: ErrorPatternAnalyzer
    notifier: NotificationSink
    orchestrator: RecoveryOrchestrator
    watchdog: Watchdog

    def close(self) -> None:
        self.storage.close()


def build_services(
    settings: Optional[Settings] = None,
    error_log: Optional[ErrorLogBuffer] = None,
    notifier: Optional[NotificationSink] = None,
    storage: Optional[StorageBackend] = None,
    restarter: Optional[Callable[[], None]] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> Services:
    """
    Construct and wire the service graph.

    Args:
        settings: Configuration (defaults to get_settings())
        error_log: Buffer installed in the logging chain; a private one
            is created when omitted
        notifier: Outcome sink (defaults to the structured-log sink)
        storage: Pre-built store (defaults to SQLite at settings.db_path)
        restarter: Process restart hook (defaults to re-exec)
        clock: "now" source shared by every component

    Raises:
        BackupConfigurationError: If the key file lives inside the backup
            directory
    """
    settings = settings or get_settings()
    error_log = error_log if error_log is not None else ErrorLogBuffer()
    notifier = notifier or LoggingNotificationSink()
    storage = storage or SQLiteStorage(settings.db_path)

    sampler = MetricSampler(storage, clock=clock)
    runtime = RuntimeControls(
        storage,
        memory_limit_bytes=settings.memory_limit_bytes,
        restarter=restarter,
    )
    probe = HealthProbe(storage, sampler, runtime, settings)
    optimizer = StoreOptimizer(storage, sampler)

    codec = FernetBackupCodec(settings.key_path, backup_dir=settings.backup_path)
    backups = BackupPipeline(
        storage,
        codec,
        settings.backup_path,
        retention_days=settings.backup_retention_days,
        clock=clock,
    )
    restore = RestorePipeline(storage, backups, codec)

    error_patterns = ErrorPatternAnalyzer(
        error_log,
        min_occurrences=settings.error_pattern_min_occurrences,
    )
    orchestrator = RecoveryOrchestrator(
        storage=storage,
        probe=probe,
        runtime=runtime,
        optimizer=optimizer,
        backups=backups,
        restore=restore,
        error_patterns=error_patterns,
        notifier=notifier,
        settings=settings,
        clock=clock,
    )
    watchdog = Watchdog(probe, orchestrator, settings)

    logger.info(
        "services_built",
        db_path=str(storage.path),
        backup_dir=str(settings.backup_path),
        retention_days=settings.backup_retention_days,
    )

    return Services(
        settings=settings,
        storage=storage,
        sampler=sampler,
        runtime=runtime,
        probe=probe,
        optimizer=optimizer,
        codec=codec,
        backups=backups,
        restore=restore,
        error_log=error_log,
        error_patterns=error_patterns,
        notifier=notifier,
        orchestrator=orchestrator,
        watchdog=watchdog,
    )
