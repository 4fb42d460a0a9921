"""
Unit tests for RecoveryOrchestrator: decision table, mutual exclusion,
guaranteed cleanup and outcome reporting.

Async entry points are driven with asyncio.run inside plain tests.
"""

import asyncio
from datetime import timedelta

import pytest

from auditguard.engine.monitors.optimizer import StoreOptimizer
from auditguard.engine.recovery.error_patterns import ErrorPatternAnalyzer
from auditguard.engine.recovery.orchestrator import RecoveryOrchestrator
from auditguard.models.enums import (
    Condition,
    NotificationPriority,
    RecoveryAction,
    RestoreState,
    Trigger,
)
from auditguard.storage.base import StorageError
from tests.conftest import (
    FailingSink,
    count_rows,
    make_audit_row,
    make_settings,
    running_loop_thread,
)


def step_names(attempt):
    return [s.name for s in attempt.steps]


def build_orchestrator(components, **overrides):
    params = dict(components)
    params.update(overrides)
    return RecoveryOrchestrator(**params)


@pytest.fixture
def components(storage, probe, runtime, sampler, backups, restore, error_log, sink, settings, clock):
    return dict(
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


# =============================================================================
# Mutual exclusion and cleanup
# =============================================================================


class TestGuard:
    def test_overlapping_attempts_run_exactly_once(self, orchestrator, runtime, sink):
        runtime.block = True

        async def scenario():
            first = asyncio.create_task(orchestrator.handle(Condition.SLOW_RESPONSES))
            await asyncio.sleep(0)
            assert orchestrator.is_recovering is True
            second = await orchestrator.handle(Condition.HIGH_MEMORY)
            runtime.release.set()
            return await first, second

        first, second = asyncio.run(scenario())

        assert second is None
        assert first.action == RecoveryAction.PERFORMANCE_TUNING
        assert runtime.calls.count("clear_caches") == 1
        assert "collect_garbage" not in runtime.calls
        assert len(sink.sent) == 1
        assert orchestrator.is_recovering is False

    def test_none_condition_does_nothing(self, orchestrator, sink):
        assert asyncio.run(orchestrator.handle(Condition.NONE)) is None
        assert sink.sent == []
        assert orchestrator.history() == []

    def test_failed_step_clears_flag_and_reports_high(self, orchestrator, runtime, sink):
        runtime.fail_clear = True

        attempt = asyncio.run(orchestrator.handle(Condition.SLOW_RESPONSES))

        assert attempt.success is False
        assert attempt.error.startswith("clear_caches: ")
        assert step_names(attempt) == ["clear_caches"]
        assert orchestrator.is_recovering is False
        assert sink.sent[0].priority == NotificationPriority.HIGH
        assert "failed" in sink.sent[0].title

    def test_notifier_failure_never_wedges_the_guard(self, components):
        orchestrator = build_orchestrator(components, notifier=FailingSink())

        attempt = asyncio.run(orchestrator.handle(Condition.SLOW_RESPONSES))

        assert attempt.success is True
        assert orchestrator.is_recovering is False

    def test_step_timeout_is_a_database_error_failure(self, components, runtime, tmp_path):
        runtime.block = True
        orchestrator = build_orchestrator(
            components, settings=make_settings(tmp_path, step_timeout_seconds=0.05)
        )

        async def scenario():
            asyncio.get_running_loop().call_later(0.2, runtime.release.set)
            return await orchestrator.handle(Condition.SLOW_RESPONSES)

        attempt = asyncio.run(scenario())

        assert attempt.success is False
        assert step_names(attempt) == ["clear_caches"]
        assert "database_error" in attempt.steps[0].error
        assert orchestrator.is_recovering is False

    def test_timed_out_step_keeps_the_guard_until_its_thread_ends(
        self, components, runtime, sink, tmp_path
    ):
        runtime.block = True
        orchestrator = build_orchestrator(
            components, settings=make_settings(tmp_path, step_timeout_seconds=0.05)
        )

        async def scenario():
            first = asyncio.create_task(orchestrator.handle(Condition.SLOW_RESPONSES))
            await asyncio.sleep(0.2)
            still_recovering = orchestrator.is_recovering
            second = await orchestrator.handle(Condition.HIGH_MEMORY)
            runtime.release.set()
            return still_recovering, second, await first

        still_recovering, second, first = asyncio.run(scenario())

        assert still_recovering is True
        assert second is None
        assert "collect_garbage" not in runtime.calls
        assert "database_error" in first.error
        assert len(sink.sent) == 1
        assert orchestrator.is_recovering is False

    def test_guard_is_free_again_after_timed_out_thread_ends(self, components, runtime, tmp_path):
        runtime.block = True
        orchestrator = build_orchestrator(
            components, settings=make_settings(tmp_path, step_timeout_seconds=0.05)
        )

        async def scenario():
            asyncio.get_running_loop().call_later(0.1, runtime.release.set)
            await orchestrator.handle(Condition.SLOW_RESPONSES)
            runtime.block = False
            return await orchestrator.handle(Condition.HIGH_MEMORY)

        second = asyncio.run(scenario())

        assert second is not None
        assert second.success is True

    def test_attempts_are_closed_and_kept_newest_first(self, orchestrator, clock):
        asyncio.run(orchestrator.handle(Condition.SLOW_RESPONSES))
        clock.advance(minutes=1)
        asyncio.run(orchestrator.handle(Condition.HIGH_MEMORY))

        history = orchestrator.history()

        assert [a.action for a in history] == [
            RecoveryAction.MEMORY_RELIEF,
            RecoveryAction.PERFORMANCE_TUNING,
        ]
        assert all(not a.is_open for a in history)
        assert history[0].finished_at == clock.now

    def test_history_is_bounded(self, components, tmp_path):
        orchestrator = build_orchestrator(
            components, settings=make_settings(tmp_path, attempt_history_size=2)
        )

        for _ in range(4):
            asyncio.run(orchestrator.handle(Condition.HIGH_MEMORY))

        assert len(orchestrator.history()) == 2


# =============================================================================
# Decision table
# =============================================================================


class TestDecisionTable:
    def test_slow_responses(self, orchestrator, sink):
        attempt = asyncio.run(orchestrator.handle(Condition.SLOW_RESPONSES))

        assert attempt.success is True
        assert attempt.trigger == Trigger.SLOW_RESPONSES
        assert step_names(attempt) == ["clear_caches", "analyze", "rebuild_indexes"]
        assert sink.sent[0].priority == NotificationPriority.MEDIUM
        assert sink.sent[0].type == "system"

    def test_high_memory_below_restart_ratio(self, orchestrator, runtime):
        runtime.ratio = 0.92

        attempt = asyncio.run(orchestrator.handle(Condition.HIGH_MEMORY))

        assert step_names(attempt) == ["clear_caches", "collect_garbage", "measure_memory"]
        assert "restart_process" not in runtime.calls

    def test_high_memory_above_restart_ratio_restarts(self, orchestrator, runtime):
        runtime.ratio = 0.97

        attempt = asyncio.run(orchestrator.handle(Condition.HIGH_MEMORY))

        assert step_names(attempt)[-1] == "restart_process"
        assert runtime.calls[-1] == "restart_process"

    def test_high_error_rate_healthy_self_check(self, orchestrator, runtime, error_log):
        attempt = asyncio.run(orchestrator.handle(Condition.HIGH_ERROR_RATE))

        assert attempt.success is True
        assert step_names(attempt) == ["self_check", "reset_connections", "error_patterns"]
        assert "restart_process" not in runtime.calls
        assert attempt.details["self_check_healthy"] is True

    def test_high_error_rate_unhealthy_self_check_restarts(self, orchestrator, probe, runtime, monkeypatch):
        monkeypatch.setattr(probe, "self_check", lambda: False)

        attempt = asyncio.run(orchestrator.handle(Condition.HIGH_ERROR_RATE))

        assert step_names(attempt)[:2] == ["self_check", "restart_process"]
        assert "restart_process" in runtime.calls

    def test_high_error_rate_runs_matched_strategy(self, orchestrator, error_log):
        handled = []
        orchestrator.error_patterns.register("audit_search_failed", handled.append)
        for _ in range(3):
            error_log(None, "error", {"event": "audit_search_failed", "error": "database is locked"})

        attempt = asyncio.run(orchestrator.handle(Condition.HIGH_ERROR_RATE))

        assert attempt.details["patterns"] == ["audit_search_failed"]
        assert handled[0].occurrences == 3

    def test_database_error_on_healthy_store_skips_restore(self, orchestrator, sink):
        attempt = asyncio.run(orchestrator.handle(Condition.DATABASE_ERROR))

        assert attempt.success is True
        assert step_names(attempt) == ["reset_connections", "integrity_check"]
        assert attempt.details["integrity_ok"] is True
        assert sink.sent[0].priority == NotificationPriority.MEDIUM

    def test_database_error_reopens_a_closed_store(self, orchestrator, storage):
        storage.close()

        attempt = asyncio.run(orchestrator.handle(Condition.DATABASE_ERROR))

        assert attempt.success is True
        assert storage.is_open

    def test_index_corruption_rebuilds_first(self, orchestrator):
        attempt = asyncio.run(orchestrator.handle(Condition.INDEX_CORRUPTION))

        assert step_names(attempt) == ["reset_connections", "rebuild_indexes", "integrity_check"]

    def test_unhealthy_store_without_backup_fails_high(self, orchestrator, storage, sink, monkeypatch):
        monkeypatch.setattr(storage, "integrity_check", lambda: ["row 12 missing from index"])

        attempt = asyncio.run(orchestrator.handle(Condition.DATABASE_ERROR))

        assert attempt.success is False
        assert step_names(attempt)[-1] == "restore"
        assert attempt.details["restore"]["state"] == RestoreState.FAILED.value
        assert sink.sent[0].priority == NotificationPriority.HIGH

    def test_unopenable_store_is_restored_from_backup(self, orchestrator, storage, backups, clock, sink):
        make_audit_row(storage, clock.now)
        backups.create_backup()
        storage.close()
        storage.path.write_bytes(b"not a database page" * 512)

        attempt = asyncio.run(orchestrator.handle(Condition.DATABASE_ERROR))

        assert attempt.success is True
        assert [(s.name, s.success) for s in attempt.steps] == [
            ("reset_connections", False),
            ("restore", True),
        ]
        assert attempt.details["integrity_ok"] is False
        assert attempt.details["restore"]["state"] == RestoreState.DONE.value
        assert storage.is_open
        assert count_rows(storage, "permission_audit") == 1
        assert sink.sent[0].priority == NotificationPriority.MEDIUM

    def test_unopenable_store_without_backup_fails_high(self, orchestrator, storage, sink):
        storage.close()
        storage.path.write_bytes(b"not a database page" * 512)

        attempt = asyncio.run(orchestrator.handle(Condition.DATABASE_ERROR))

        assert attempt.success is False
        assert step_names(attempt) == ["reset_connections", "restore"]
        assert attempt.error.startswith("restore: ")
        assert sink.sent[0].priority == NotificationPriority.HIGH

    def test_failed_index_rebuild_escalates_to_restore(self, orchestrator, storage, backups, monkeypatch):
        backups.create_backup()

        def broken_reindex(tables=None):
            raise StorageError("reindex failed: database disk image is malformed")

        monkeypatch.setattr(storage, "reindex", broken_reindex)

        attempt = asyncio.run(orchestrator.handle(Condition.INDEX_CORRUPTION))

        assert step_names(attempt) == ["reset_connections", "rebuild_indexes", "restore"]
        assert attempt.steps[1].success is False
        assert attempt.success is True

    def test_oversized_store_archives_and_compacts(self, orchestrator, storage, clock, sink):
        for days in (400, 500, 10):
            make_audit_row(storage, clock.now - timedelta(days=days))

        attempt = asyncio.run(orchestrator.handle(Condition.OVERSIZED_STORE))

        assert attempt.success is True
        assert step_names(attempt) == ["archive_records", "compact"]
        assert attempt.details["archived_rows"] == 2
        assert count_rows(storage, "permission_audit") == 1
        assert count_rows(storage, "permission_audit_archive") == 2
        assert sink.sent[0].priority == NotificationPriority.LOW

    def test_compaction_measures_size_off_the_event_loop(self, orchestrator, storage, monkeypatch):
        threads = []
        size_bytes = storage.size_bytes

        def tracked_size_bytes():
            threads.append(running_loop_thread())
            return size_bytes()

        monkeypatch.setattr(storage, "size_bytes", tracked_size_bytes)

        attempt = asyncio.run(orchestrator.handle(Condition.OVERSIZED_STORE))

        assert attempt.success is True
        assert "size_reduction" in attempt.details
        assert threads == ["worker", "worker"]


# =============================================================================
# Operator and scheduled work
# =============================================================================


class TestGuardedOperations:
    def test_backup_is_verified_and_reported_low(self, orchestrator, sink):
        attempt = asyncio.run(orchestrator.run_backup())

        assert attempt.success is True
        assert attempt.trigger == Trigger.OPERATOR
        assert step_names(attempt) == ["create_backup", "verify_backup", "remove_old_backups"]
        assert attempt.details["verified"] is True
        assert sink.sent[0].priority == NotificationPriority.LOW

    def test_backup_without_key_reports_high(self, orchestrator, key_path, sink):
        key_path.unlink()

        attempt = asyncio.run(orchestrator.run_backup())

        assert attempt.success is False
        assert step_names(attempt) == ["create_backup"]
        assert sink.sent[0].priority == NotificationPriority.HIGH

    def test_restore_on_healthy_store(self, orchestrator, sink):
        attempt = asyncio.run(orchestrator.run_restore())

        assert attempt.success is True
        assert attempt.details["restore"]["state"] == RestoreState.DONE.value
        assert sink.sent[0].priority == NotificationPriority.MEDIUM

    def test_optimization_sweep_records_metrics(self, orchestrator, sampler, sink):
        attempt = asyncio.run(orchestrator.run_optimization())

        assert attempt.success is True
        assert attempt.trigger == Trigger.SCHEDULE
        assert sink.sent[0].priority == NotificationPriority.LOW
        for name in ("db_optimization_time", "db_size_reduction", "query_time_improvement"):
            assert len(sampler.get_metrics(name)) == 1

    def test_operations_are_dropped_while_recovering(self, orchestrator, runtime):
        runtime.block = True

        async def scenario():
            running = asyncio.create_task(orchestrator.handle(Condition.SLOW_RESPONSES))
            await asyncio.sleep(0)
            dropped = [
                await orchestrator.run_backup(),
                await orchestrator.run_restore(),
                await orchestrator.run_optimization(),
            ]
            runtime.release.set()
            await running
            return dropped

        assert asyncio.run(scenario()) == [None, None, None]

    def test_handle_all_skips_none(self, orchestrator):
        attempts = asyncio.run(
            orchestrator.handle_all([Condition.NONE, Condition.HIGH_MEMORY, Condition.NONE])
        )

        assert [a.action for a in attempts] == [RecoveryAction.MEMORY_RELIEF]
