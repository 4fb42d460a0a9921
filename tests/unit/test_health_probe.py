"""
Unit tests for HealthProbe threshold, structural and size checks.
"""

from datetime import timedelta

from auditguard.engine.monitors.health_probe import HealthProbe
from auditguard.models.enums import Condition
from auditguard.models.recovery import IndexStatistic
from auditguard.storage.base import StorageError
from tests.conftest import make_audit_row, make_settings


def record_window(sampler, clock, name, values):
    for i, value in enumerate(values):
        sampler.record_metric(name, value, timestamp=clock.now - timedelta(seconds=30 + i))


class TestFastChecks:
    def test_quiet_store_reports_none(self, probe):
        assert probe.check_fast() == [Condition.NONE]

    def test_zero_requests_is_zero_error_rate(self, probe, sampler, clock):
        record_window(sampler, clock, "audit_error_count", [4.0])

        snapshot = probe.collect_performance()

        assert snapshot.request_count == 0
        assert snapshot.error_rate == 0.0
        assert probe.check_fast() == [Condition.NONE]

    def test_slow_responses(self, probe, sampler, clock):
        record_window(sampler, clock, "audit_search_duration_ms", [1500.0, 1200.0, 900.0])

        assert probe.check_fast() == [Condition.SLOW_RESPONSES]

    def test_latency_at_threshold_is_not_slow(self, probe, sampler, clock):
        record_window(sampler, clock, "audit_search_duration_ms", [1000.0])

        assert probe.check_fast() == [Condition.NONE]

    def test_old_latency_samples_are_outside_the_window(self, probe, sampler, clock):
        sampler.record_metric(
            "audit_search_duration_ms", 5000.0, timestamp=clock.now - timedelta(minutes=30)
        )

        assert probe.check_fast() == [Condition.NONE]

    def test_error_rate_is_a_true_rate(self, probe, sampler, clock):
        record_window(sampler, clock, "audit_request_count", [50.0, 50.0])
        record_window(sampler, clock, "audit_error_count", [6.0, 4.0])

        snapshot = probe.collect_performance()

        assert snapshot.error_rate == 0.1
        assert probe.check_fast() == [Condition.HIGH_ERROR_RATE]

    def test_low_error_rate_is_healthy(self, probe, sampler, clock):
        record_window(sampler, clock, "audit_request_count", [100.0])
        record_window(sampler, clock, "audit_error_count", [1.0])

        assert probe.check_fast() == [Condition.NONE]

    def test_high_memory(self, probe, runtime):
        runtime.ratio = 0.93

        assert probe.check_fast() == [Condition.HIGH_MEMORY]

    def test_thresholds_are_independent(self, probe, sampler, clock, runtime):
        runtime.ratio = 0.99
        record_window(sampler, clock, "audit_search_duration_ms", [2000.0])
        record_window(sampler, clock, "audit_request_count", [10.0])
        record_window(sampler, clock, "audit_error_count", [5.0])

        assert probe.check_fast() == [
            Condition.SLOW_RESPONSES,
            Condition.HIGH_ERROR_RATE,
            Condition.HIGH_MEMORY,
        ]

    def test_closed_store_is_a_database_error(self, probe, storage):
        storage.close()

        assert probe.check_liveness() is False
        assert probe.check_fast() == [Condition.DATABASE_ERROR]

    def test_self_check_records_health_metric(self, probe, sampler):
        assert probe.self_check() is True
        assert [s.name for s in sampler.get_metrics("health_check")] == ["health_check"]

    def test_self_check_fails_on_closed_store(self, probe, storage):
        storage.close()

        assert probe.self_check() is False


class TestStructuralChecks:
    def test_fresh_store_is_structurally_sound(self, probe):
        assert probe.check_structure() == Condition.NONE

    def test_malformed_catalog_entry_flags_rebuild(self, probe, storage, monkeypatch):
        monkeypatch.setattr(storage, "malformed_indexes", lambda: ["idx_permission_audit_actor"])

        assert probe.check_structure() == Condition.INDEX_CORRUPTION

    def test_high_seek_ratio_flags_rebuild(self, probe, storage, monkeypatch):
        stats = [
            IndexStatistic(
                table="permission_audit",
                index="idx_permission_audit_actor",
                idx_entries=2000,
                avg_seek_time=1500.0,
            )
        ]
        monkeypatch.setattr(storage, "index_statistics", lambda: stats)

        assert probe.needs_index_rebuild() is True

    def test_small_indexes_are_ignored(self, probe, storage, monkeypatch):
        stats = [
            IndexStatistic(table="audit_metrics", index="idx_small", idx_entries=10, avg_seek_time=9.0)
        ]
        monkeypatch.setattr(storage, "index_statistics", lambda: stats)

        assert probe.needs_index_rebuild() is False

    def test_structural_check_does_not_refresh_statistics(self, probe, storage):
        assert probe.check_structure() == Condition.NONE

        stat_table = storage.query_one(
            "SELECT name FROM sqlite_master WHERE type = 'table' AND name = 'sqlite_stat1'"
        )
        assert stat_table is None
        assert storage.index_statistics() == []

    def test_statistics_are_read_after_analyze(self, storage, clock):
        for _ in range(20):
            make_audit_row(storage, clock.now)

        storage.analyze()

        stats = storage.index_statistics()
        assert stats
        assert all(s.idx_entries == 20 for s in stats if s.table == "permission_audit")

    def test_unreadable_statistics_are_a_database_error(self, probe, storage, monkeypatch):
        def broken():
            raise StorageError("index_statistics failed: disk I/O error")

        monkeypatch.setattr(storage, "malformed_indexes", broken)

        assert probe.check_structure() == Condition.DATABASE_ERROR


class TestSizeCheck:
    def test_under_ceiling(self, probe):
        assert probe.check_size() == Condition.NONE

    def test_over_ceiling(self, tmp_path, storage, sampler, runtime):
        probe = HealthProbe(storage, sampler, runtime, make_settings(tmp_path, db_size_limit_bytes=1))

        assert probe.check_size() == Condition.OVERSIZED_STORE
        assert probe.check_medium() == [Condition.OVERSIZED_STORE]

    def test_medium_check_on_healthy_store(self, probe):
        assert probe.check_medium() == [Condition.NONE]


def test_snapshot_contains_readings(probe):
    snapshot = probe.snapshot()

    assert snapshot["live"] is True
    assert snapshot["size_bytes"] > 0
    assert snapshot["error_rate"] == 0.0
