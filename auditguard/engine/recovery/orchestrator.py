"""
Recovery Orchestrator — serialized remediation for detected conditions.

State: Idle -> Recovering(action) -> Idle. A single boolean guard makes
remediation mutually exclusive across the whole process; a condition that
arrives while an attempt is open is dropped, not queued.

Decision table (each condition maps to one fixed sequence):

    slow_responses      clear caches -> analyze -> rebuild indexes
    high_error_rate     self check (-> restart if unhealthy) -> reset
                        connections -> recurring error patterns
    high_memory         clear caches -> garbage pass -> measure
                        (-> restart above the restart ratio)
    index_corruption    reset connections -> rebuild indexes ->
                        integrity check (-> restore if unhealthy)
    database_error      reset connections -> integrity check
                        (-> restore if unhealthy)
    oversized_store     archive old rows (one transaction) -> compact

A store that cannot be reconnected or reindexed counts as unhealthy and goes
straight to restore.

Operator and scheduled work (optimization sweep, backup, restore) runs
under the same guard. Every attempt, however it ends, produces exactly one
notification and clears the guard. A step that times out fails the attempt
at once, but the guard is only released after its worker thread returns.

Version: recovery_orchestrator_v1
"""

import asyncio
import time
from collections import deque
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Optional

import structlog

from auditguard.config import Settings
from auditguard.engine.backup.codec import BackupError
from auditguard.engine.backup.pipeline import BackupPipeline
from auditguard.engine.backup.restore import RestorePipeline
from auditguard.engine.monitors.health_probe import HealthProbe
from auditguard.engine.monitors.optimizer import StoreOptimizer, format_bytes
from auditguard.engine.runtime import RuntimeControls
from auditguard.models.enums import Condition, NotificationPriority, RecoveryAction, Trigger
from auditguard.models.notifications import Notification
from auditguard.models.recovery import RecoveryAttempt, StepOutcome
from auditguard.notifications import NotificationSink, notify_safely
from auditguard.storage.base import StorageBackend

from .error_patterns import ErrorPatternAnalyzer

logger = structlog.get_logger()


CONDITION_ACTIONS = {
    Condition.SLOW_RESPONSES: RecoveryAction.PERFORMANCE_TUNING,
    Condition.HIGH_ERROR_RATE: RecoveryAction.ERROR_RATE_RECOVERY,
    Condition.HIGH_MEMORY: RecoveryAction.MEMORY_RELIEF,
    Condition.INDEX_CORRUPTION: RecoveryAction.DATABASE_REPAIR,
    Condition.DATABASE_ERROR: RecoveryAction.DATABASE_REPAIR,
    Condition.OVERSIZED_STORE: RecoveryAction.ARCHIVE_AND_COMPACT,
}

# Priority of a successful outcome; every failure is reported as HIGH.
SUCCESS_PRIORITY = {
    RecoveryAction.PERFORMANCE_TUNING: NotificationPriority.MEDIUM,
    RecoveryAction.ERROR_RATE_RECOVERY: NotificationPriority.MEDIUM,
    RecoveryAction.MEMORY_RELIEF: NotificationPriority.MEDIUM,
    RecoveryAction.DATABASE_REPAIR: NotificationPriority.MEDIUM,
    RecoveryAction.ARCHIVE_AND_COMPACT: NotificationPriority.LOW,
    RecoveryAction.OPTIMIZATION_SWEEP: NotificationPriority.LOW,
    RecoveryAction.BACKUP: NotificationPriority.LOW,
    RecoveryAction.RESTORE: NotificationPriority.MEDIUM,
}


class StepFailed(Exception):
    """
    A remediation step failed.

    `fatal` failures end the sequence. A sequence may catch a non-fatal
    failure and escalate instead; a timeout is always fatal.
    """

    def __init__(self, step: str, fatal: bool = True):
        super().__init__(step)
        self.step = step
        self.fatal = fatal


class RecoveryOrchestrator:
    """
    Runs at most one remediation sequence at a time.

    All collaborators are injected; the guard, the open attempt and the
    attempt history are the only state. Steps execute in worker threads,
    one after another, each bounded by `step_timeout_seconds`, so the event
    loop driving the watchdog timers is never blocked by VACUUM or a file
    copy.

    Attributes:
        storage: Live store
        probe: Health checks (self check)
        runtime: Process controls (caches, GC, memory, restart)
        optimizer: Optimization sweep
        backups: Backup pipeline
        restore: Restore pipeline
        error_patterns: Recurring error analyzer
        notifier: Outcome sink
        settings: Thresholds, timeouts, history size

    Example:
        >>> attempt = await orchestrator.handle(Condition.SLOW_RESPONSES)
        >>> attempt.success, [s.name for s in attempt.steps]
        (True, ['clear_caches', 'analyze', 'rebuild_indexes'])
    """

    def __init__(
        self,
        storage: StorageBackend,
        probe: HealthProbe,
        runtime: RuntimeControls,
        optimizer: StoreOptimizer,
        backups: BackupPipeline,
        restore: RestorePipeline,
        error_patterns: ErrorPatternAnalyzer,
        notifier: NotificationSink,
        settings: Settings,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.storage = storage
        self.probe = probe
        self.runtime = runtime
        self.optimizer = optimizer
        self.backups = backups
        self.restore = restore
        self.error_patterns = error_patterns
        self.notifier = notifier
        self.settings = settings
        self.clock = clock or (lambda: datetime.now(timezone.utc))

        self._is_recovering = False
        self._current: Optional[RecoveryAttempt] = None
        # Worker of a step that timed out; the guard stays held until it ends
        self._straggler: Optional[asyncio.Future] = None
        self._history: deque[RecoveryAttempt] = deque(maxlen=settings.attempt_history_size)

    @property
    def is_recovering(self) -> bool:
        return self._is_recovering

    @property
    def current_attempt(self) -> Optional[RecoveryAttempt]:
        return self._current

    def history(self) -> list[RecoveryAttempt]:
        """Closed attempts, most recent first."""
        return list(self._history)

    # =========================================================================
    # Entry points
    # =========================================================================

    async def handle(self, condition: Condition) -> Optional[RecoveryAttempt]:
        """
        Remediate one detected condition.

        Returns:
            The closed attempt, or None when the condition needs no action
            or was dropped because another attempt is running
        """
        if condition == Condition.NONE:
            return None

        sequences = {
            RecoveryAction.PERFORMANCE_TUNING: self._performance_tuning,
            RecoveryAction.ERROR_RATE_RECOVERY: self._error_rate_recovery,
            RecoveryAction.MEMORY_RELIEF: self._memory_relief,
            RecoveryAction.DATABASE_REPAIR: self._database_repair,
            RecoveryAction.ARCHIVE_AND_COMPACT: self._archive_and_compact,
        }
        action = CONDITION_ACTIONS[condition]
        return await self._run(Trigger(condition.value), action, sequences[action])

    async def handle_all(self, conditions: list[Condition]) -> list[RecoveryAttempt]:
        """Remediate each condition in turn; NONE entries are skipped."""
        attempts = []
        for condition in conditions:
            attempt = await self.handle(condition)
            if attempt is not None:
                attempts.append(attempt)
        return attempts

    async def run_optimization(self, trigger: Trigger = Trigger.SCHEDULE) -> Optional[RecoveryAttempt]:
        return await self._run(trigger, RecoveryAction.OPTIMIZATION_SWEEP, self._optimization_sweep)

    async def run_backup(self, trigger: Trigger = Trigger.OPERATOR) -> Optional[RecoveryAttempt]:
        return await self._run(trigger, RecoveryAction.BACKUP, self._backup)

    async def run_restore(self, trigger: Trigger = Trigger.OPERATOR) -> Optional[RecoveryAttempt]:
        return await self._run(trigger, RecoveryAction.RESTORE, self._restore)

    # =========================================================================
    # Guard and step execution
    # =========================================================================

    async def _run(
        self,
        trigger: Trigger,
        action: RecoveryAction,
        sequence: Callable[[RecoveryAttempt], Awaitable[None]],
    ) -> Optional[RecoveryAttempt]:
        # Check and set happen with no await in between.
        if self._is_recovering:
            logger.info(
                "recovery_dropped",
                trigger=trigger.value,
                action=action.value,
                running=self._current.action.value if self._current else None,
            )
            return None
        self._is_recovering = True

        attempt = RecoveryAttempt(trigger=trigger, action=action, started_at=self.clock())
        self._current = attempt
        logger.info("recovery_started", trigger=trigger.value, action=action.value)

        try:
            await sequence(attempt)
        except StepFailed:
            pass
        except Exception as e:
            logger.error("recovery_sequence_crashed", action=action.value, error=str(e), exc_info=True)
            if attempt.error is None:
                attempt.error = str(e)
        finally:
            try:
                await self._drain_straggler(attempt)
                attempt.success = attempt.error is None
                attempt.finished_at = self.clock()
                self._history.appendleft(attempt)
                self._current = None
                self._report(attempt)
            finally:
                self._is_recovering = False

        return attempt

    async def _drain_straggler(self, attempt: RecoveryAttempt) -> None:
        """Wait for the worker of a timed-out step before releasing the guard."""
        task, self._straggler = self._straggler, None
        if task is None:
            return
        logger.warning("recovery_waiting_for_timed_out_step", action=attempt.action.value)
        try:
            await task
        except Exception as e:
            logger.warning(
                "recovery_timed_out_step_failed", action=attempt.action.value, error=str(e)
            )
        logger.info("recovery_timed_out_step_finished", action=attempt.action.value)

    async def _step(
        self,
        attempt: RecoveryAttempt,
        name: str,
        fn: Callable[[], Any],
        required: bool = True,
    ) -> Any:
        """
        Run one blocking step in a worker thread and record its outcome.

        A timed-out worker cannot be interrupted; it is kept as the
        straggler that _run waits for before releasing the guard.

        Args:
            required: When False, a raised error is recorded without
                failing the attempt (the caller escalates instead)

        Raises:
            StepFailed: If the step raised or timed out
        """
        timeout = self.settings.step_timeout_seconds
        started = time.perf_counter()
        task = asyncio.ensure_future(asyncio.to_thread(fn))
        fatal = required
        try:
            result = await asyncio.wait_for(asyncio.shield(task), timeout=timeout)
        except asyncio.TimeoutError:
            self._straggler = task
            fatal = True
            error = f"{Condition.DATABASE_ERROR.value}: timed out after {timeout}s"
        except Exception as e:
            error = str(e) or type(e).__name__
        else:
            attempt.record(
                StepOutcome(name=name, success=True, duration_ms=(time.perf_counter() - started) * 1000)
            )
            return result

        attempt.record(
            StepOutcome(
                name=name,
                success=False,
                error=error,
                duration_ms=(time.perf_counter() - started) * 1000,
            ),
            fatal=fatal,
        )
        logger.warning(
            "recovery_step_failed", action=attempt.action.value, step=name, error=error, fatal=fatal
        )
        raise StepFailed(name, fatal=fatal)

    def _report(self, attempt: RecoveryAttempt) -> None:
        priority = (
            SUCCESS_PRIORITY[attempt.action] if attempt.success else NotificationPriority.HIGH
        )
        outcome = "succeeded" if attempt.success else "failed"
        lines = [
            f"Action: {attempt.action.value}",
            f"Trigger: {attempt.trigger.value}",
            f"Success: {attempt.success}",
            "Steps: " + ", ".join(
                f"{s.name}={'ok' if s.success else 'failed'}" for s in attempt.steps
            ),
        ]
        if attempt.error:
            lines.append(f"Error: {attempt.error}")
        for key, value in attempt.details.items():
            lines.append(f"{key}: {value}")

        logger.info(
            "recovery_finished",
            action=attempt.action.value,
            trigger=attempt.trigger.value,
            success=attempt.success,
            error=attempt.error,
        )
        notify_safely(
            self.notifier,
            Notification(
                title=f"Audit store {attempt.action.value.replace('_', ' ')} {outcome}",
                body="\n".join(lines),
                priority=priority,
            ),
        )

    # =========================================================================
    # Sequences
    # =========================================================================

    async def _performance_tuning(self, attempt: RecoveryAttempt) -> None:
        await self._step(attempt, "clear_caches", self.runtime.clear_caches)
        await self._step(attempt, "analyze", self.storage.analyze)
        await self._step(attempt, "rebuild_indexes", self.storage.reindex)

    async def _error_rate_recovery(self, attempt: RecoveryAttempt) -> None:
        healthy = await self._step(attempt, "self_check", self.probe.self_check)
        attempt.details["self_check_healthy"] = healthy
        if not healthy:
            await self._step(attempt, "restart_process", self.runtime.restart_process)
        await self._step(attempt, "reset_connections", self.storage.reopen)
        handled = await self._step(
            attempt, "error_patterns", self.error_patterns.analyze_and_recover
        )
        attempt.details["patterns"] = handled

    async def _memory_relief(self, attempt: RecoveryAttempt) -> None:
        await self._step(attempt, "clear_caches", self.runtime.clear_caches)
        await self._step(attempt, "collect_garbage", self.runtime.collect_garbage)
        ratio = await self._step(attempt, "measure_memory", self.runtime.memory_ratio)
        attempt.details["memory_ratio"] = round(ratio, 4)
        if ratio > self.settings.memory_restart_ratio:
            await self._step(attempt, "restart_process", self.runtime.restart_process)

    async def _database_repair(self, attempt: RecoveryAttempt) -> None:
        # A store that cannot be reopened or reindexed is still unhealthy
        try:
            await self._step(attempt, "reset_connections", self.storage.reopen, required=False)
            if attempt.trigger == Trigger.INDEX_CORRUPTION:
                await self._step(attempt, "rebuild_indexes", self.storage.reindex, required=False)
        except StepFailed as e:
            if e.fatal:
                raise
            healthy = False
        else:
            healthy = await self._step(attempt, "integrity_check", self.storage.is_healthy)
        attempt.details["integrity_ok"] = healthy
        if not healthy:
            await self._restore(attempt)

    async def _archive_and_compact(self, attempt: RecoveryAttempt) -> None:
        cutoff = self.clock() - timedelta(days=self.settings.archive_after_days)
        moved = await self._step(
            attempt, "archive_records", lambda: self.storage.archive_records(cutoff)
        )
        attempt.details["archived_rows"] = moved

        def compact() -> int:
            size_before = self.storage.size_bytes()
            self.storage.vacuum()
            return size_before - self.storage.size_bytes()

        reclaimed = await self._step(attempt, "compact", compact)
        attempt.details["size_reduction"] = format_bytes(reclaimed)

    async def _optimization_sweep(self, attempt: RecoveryAttempt) -> None:
        result = await self._step(attempt, "optimize", self.optimizer.run)
        attempt.details.update(
            duration_ms=round(result.duration_ms, 1),
            size_reduction=format_bytes(result.size_reduction_bytes or 0),
            query_time_improvement_ms=round(result.query_time_improvement_ms or 0.0, 3),
        )

    async def _backup(self, attempt: RecoveryAttempt) -> None:
        artifact = await self._step(attempt, "create_backup", self.backups.create_backup)
        attempt.details["artifact"] = artifact.name

        def verify() -> bool:
            if not self.backups.verify_backup(artifact):
                raise BackupError(f"verification failed for {artifact.name}")
            return True

        attempt.details["verified"] = False
        await self._step(attempt, "verify_backup", verify)
        attempt.details["verified"] = True
        removed = await self._step(attempt, "remove_old_backups", self.backups.remove_old_backups)
        attempt.details["removed"] = [p.name for p in removed]

    async def _restore(self, attempt: RecoveryAttempt) -> None:
        def restore():
            result = self.restore.run()
            attempt.details["restore"] = result.model_dump(mode="json")
            if not result.success:
                raise BackupError(result.message)
            return result

        await self._step(attempt, "restore", restore)
