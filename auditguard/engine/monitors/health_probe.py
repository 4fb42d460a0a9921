"""
Health Probe — point-in-time checks on the audit store.

Three groups of checks run on three cadences:

- fast:   transactional liveness, then latency / error-rate / memory
          thresholds over the recent metric window
- medium: structural index check and on-disk size check
- slow:   optimization need (see StoreOptimizer)

Each check maps its finding to a Condition; NONE means nothing to do.
Checks never raise: a failure to evaluate is itself a finding
(DATABASE_ERROR) or is logged and reported as NONE.

Version: health_probe_v1
"""

import structlog

from auditguard.config import Settings
from auditguard.engine.metrics.sampler import MetricSampler
from auditguard.engine.runtime import RuntimeControls
from auditguard.models.enums import Condition
from auditguard.models.metrics import PerformanceSnapshot
from auditguard.storage.base import StorageBackend
from auditguard.storage.sqlite_storage import to_db_timestamp

logger = structlog.get_logger()


class HealthProbe:
    """
    Runs liveness, threshold, structural and size checks.

    Attributes:
        storage: Live store under observation
        sampler: Metric sampler for windowed reads
        runtime: Process controls (memory ratio)
        settings: Thresholds and window sizes
    """

    def __init__(
        self,
        storage: StorageBackend,
        sampler: MetricSampler,
        runtime: RuntimeControls,
        settings: Settings,
    ):
        self.storage = storage
        self.sampler = sampler
        self.runtime = runtime
        self.settings = settings

    # =========================================================================
    # Fast cadence
    # =========================================================================

    def check_liveness(self) -> bool:
        """Run a trivial read through the transactional path."""
        try:
            with self.storage.transaction():
                self.storage.query_one("SELECT 1")
            return True
        except Exception as e:
            logger.error("liveness_check_failed", error=str(e))
            return False

    def collect_performance(self) -> PerformanceSnapshot:
        """
        Read the recent metric window and the process memory ratio.

        The error rate is the summed error counter over the summed request
        counter within the same window, 0.0 when there were no requests.
        """
        window = self.settings.metrics_window_minutes

        latencies = self.sampler.window_samples(self.settings.latency_metric_name, window)
        avg_latency = (
            sum(s.value for s in latencies) / len(latencies) if latencies else 0.0
        )

        errors = sum(
            s.value for s in self.sampler.window_samples(self.settings.error_metric_name, window)
        )
        requests = sum(
            s.value for s in self.sampler.window_samples(self.settings.request_metric_name, window)
        )
        error_rate = errors / requests if requests > 0 else 0.0

        try:
            memory_ratio = self.runtime.memory_ratio()
        except Exception as e:
            logger.error("memory_ratio_failed", error=str(e))
            memory_ratio = 0.0

        return PerformanceSnapshot(
            avg_response_time_ms=avg_latency,
            error_count=errors,
            request_count=requests,
            error_rate=error_rate,
            memory_ratio=memory_ratio,
        )

    def evaluate_thresholds(self, snapshot: PerformanceSnapshot) -> list[Condition]:
        """Check each threshold independently; may return several conditions."""
        conditions = []
        if snapshot.avg_response_time_ms > self.settings.response_time_threshold_ms:
            conditions.append(Condition.SLOW_RESPONSES)
        if snapshot.error_rate > self.settings.error_rate_threshold:
            conditions.append(Condition.HIGH_ERROR_RATE)
        if snapshot.memory_ratio > self.settings.memory_ratio_threshold:
            conditions.append(Condition.HIGH_MEMORY)
        return conditions

    def check_fast(self) -> list[Condition]:
        """
        Liveness first; a dead store short-circuits the metric thresholds.

        Returns:
            Conditions found, or [Condition.NONE]
        """
        if not self.check_liveness():
            return [Condition.DATABASE_ERROR]

        snapshot = self.collect_performance()
        conditions = self.evaluate_thresholds(snapshot)
        logger.debug(
            "fast_check_complete",
            avg_response_time_ms=round(snapshot.avg_response_time_ms, 2),
            error_rate=round(snapshot.error_rate, 4),
            memory_ratio=round(snapshot.memory_ratio, 4),
            conditions=[c.value for c in conditions],
        )
        return conditions or [Condition.NONE]

    def self_check(self) -> bool:
        """Internal self-health check: a read plus a metric write."""
        try:
            self.storage.query_one("SELECT 1")
            self.storage.execute(
                "INSERT INTO audit_metrics (timestamp, metric_name, metric_value, metric_labels) "
                "VALUES (?, 'health_check', 1, '{}')",
                (to_db_timestamp(self.sampler.clock()),),
            )
            return True
        except Exception as e:
            logger.error("self_check_failed", error=str(e))
            return False

    # =========================================================================
    # Medium cadence
    # =========================================================================

    def needs_index_rebuild(self) -> bool:
        """
        Structural heuristic over index statistics and the catalog.

        Flags a rebuild when an index with at least `index_min_entries`
        entries has avg_seek_time / idx_entries above the ceiling, or when a
        catalog index entry has no definition.

        Raises:
            StorageError: If statistics or the catalog cannot be read
        """
        malformed = self.storage.malformed_indexes()
        if malformed:
            logger.warning("malformed_indexes_found", indexes=malformed)
            return True

        for stat in self.storage.index_statistics():
            if stat.idx_entries < self.settings.index_min_entries:
                continue
            if stat.seek_ratio > self.settings.index_seek_ratio_ceiling:
                logger.warning(
                    "index_seek_ratio_exceeded",
                    index=stat.index,
                    table=stat.table,
                    seek_ratio=round(stat.seek_ratio, 4),
                )
                return True
        return False

    def check_structure(self) -> Condition:
        try:
            return Condition.INDEX_CORRUPTION if self.needs_index_rebuild() else Condition.NONE
        except Exception as e:
            logger.error("structure_check_failed", error=str(e))
            return Condition.DATABASE_ERROR

    def check_size(self) -> Condition:
        size = self.storage.size_bytes()
        if size > self.settings.db_size_limit_bytes:
            logger.warning(
                "store_size_exceeded",
                size_bytes=size,
                limit_bytes=self.settings.db_size_limit_bytes,
            )
            return Condition.OVERSIZED_STORE
        return Condition.NONE

    def check_medium(self) -> list[Condition]:
        """Structural and size checks, each reported independently."""
        conditions = [c for c in (self.check_structure(), self.check_size()) if c != Condition.NONE]
        return conditions or [Condition.NONE]

    def snapshot(self) -> dict:
        """Operator-facing summary of the latest readings."""
        perf = self.collect_performance()
        return {
            "live": self.check_liveness(),
            "size_bytes": self.storage.size_bytes(),
            **perf.model_dump(),
        }
