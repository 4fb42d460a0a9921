"""
Metric Sampler — append-only metric samples and windowed aggregates.

Samples live in the `audit_metrics` table of the store being watched, so
every path here is written to never destabilise the caller: writes log and
swallow failures, reads return an empty list.

Bucketing happens in Python rather than in SQL so that week buckets follow
ISO weeks (Monday start) regardless of the engine's date functions.

Version: metric_sampler_v1
"""

import json
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, Optional

import structlog

from auditguard.models.enums import Aggregation, Interval
from auditguard.models.metrics import AggregateBucket, MetricSample
from auditguard.storage.base import StorageBackend
from auditguard.storage.sqlite_storage import from_db_timestamp, to_db_timestamp

logger = structlog.get_logger()


def truncate_timestamp(ts: datetime, interval: Interval) -> datetime:
    """
    Truncate a timestamp to the start of its bucket.

    Week buckets start on the Monday of the ISO week.

    Args:
        ts: Aware or naive-UTC timestamp
        interval: Bucket granularity

    Returns:
        Aware UTC datetime marking the bucket start
    """
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    ts = ts.astimezone(timezone.utc)

    if interval == Interval.HOUR:
        return ts.replace(minute=0, second=0, microsecond=0)
    day = ts.replace(hour=0, minute=0, second=0, microsecond=0)
    if interval == Interval.DAY:
        return day
    if interval == Interval.WEEK:
        return day - timedelta(days=day.isoweekday() - 1)
    if interval == Interval.MONTH:
        return day.replace(day=1)
    raise ValueError(f"Unsupported interval: {interval}")


AGGREGATORS: dict[Aggregation, Callable[[list[float]], float]] = {
    Aggregation.SUM: lambda values: float(sum(values)),
    Aggregation.AVG: lambda values: float(sum(values)) / len(values),
    Aggregation.MIN: lambda values: float(min(values)),
    Aggregation.MAX: lambda values: float(max(values)),
    Aggregation.COUNT: lambda values: float(len(values)),
}


class MetricSampler:
    """
    Records metric samples and answers windowed aggregate queries.

    Attributes:
        storage: Live store holding the `audit_metrics` table
        clock: Callable returning "now" (UTC); injectable for tests

    Example:
        >>> sampler = MetricSampler(storage=sqlite_storage)
        >>> sampler.record_metric("audit_search_duration_ms", 42.0, {"route": "search"})
        >>> sampler.get_aggregated_metrics("audit_search_duration_ms", "avg", "hour")
    """

    def __init__(
        self,
        storage: StorageBackend,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.storage = storage
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def record_metric(
        self,
        name: str,
        value: float,
        labels: Optional[dict[str, str]] = None,
        timestamp: Optional[datetime] = None,
    ) -> None:
        """
        Append one sample. Never raises.

        Args:
            name: Metric name
            value: Sample value
            labels: Optional string labels
            timestamp: Recording time (defaults to now)
        """
        labels = labels or {}
        ts = timestamp or self.clock()
        try:
            self.storage.execute(
                """
                INSERT INTO audit_metrics (timestamp, metric_name, metric_value, metric_labels)
                VALUES (?, ?, ?, ?)
                """,
                (to_db_timestamp(ts), name, float(value), json.dumps(labels)),
            )
        except Exception as e:
            logger.error(
                "metric_record_failed",
                metric_name=name,
                value=value,
                labels=labels,
                error=str(e),
            )

    def get_metrics(
        self,
        name: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> list[MetricSample]:
        """
        Return samples for `name`, newest first, optionally time-bounded.

        Bounds are inclusive. Returns an empty list on any failure.
        """
        query = """
            SELECT timestamp, metric_value, metric_labels
            FROM audit_metrics
            WHERE metric_name = ?
        """
        params: list = [name]
        if start is not None:
            query += " AND timestamp >= ?"
            params.append(to_db_timestamp(start))
        if end is not None:
            query += " AND timestamp <= ?"
            params.append(to_db_timestamp(end))
        query += " ORDER BY timestamp DESC, id DESC"

        try:
            rows = self.storage.query_all(query, params)
            return [
                MetricSample(
                    name=name,
                    value=row["metric_value"],
                    labels=json.loads(row["metric_labels"]) if row["metric_labels"] else {},
                    timestamp=from_db_timestamp(row["timestamp"]),
                )
                for row in rows
            ]
        except Exception as e:
            logger.error(
                "metric_read_failed",
                metric_name=name,
                start=str(start) if start else None,
                end=str(end) if end else None,
                error=str(e),
            )
            return []

    def get_aggregated_metrics(
        self,
        name: str,
        aggregation: Aggregation | str,
        interval: Interval | str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> list[AggregateBucket]:
        """
        Aggregate samples into time buckets.

        Returns one bucket per non-empty interval, newest first; an empty
        list on any failure (including an unknown aggregation or interval).
        """
        try:
            aggregation = Aggregation(aggregation)
            interval = Interval(interval)
        except ValueError as e:
            logger.error("metric_aggregation_invalid", metric_name=name, error=str(e))
            return []

        samples = self.get_metrics(name, start=start, end=end)
        return aggregate_samples(samples, aggregation, interval)

    def window_samples(self, name: str, minutes: int) -> list[MetricSample]:
        """Samples recorded in the last `minutes` minutes."""
        now = self.clock()
        return self.get_metrics(name, start=now - timedelta(minutes=minutes), end=now)


def aggregate_samples(
    samples: Iterable[MetricSample],
    aggregation: Aggregation,
    interval: Interval,
) -> list[AggregateBucket]:
    """Group samples by truncated timestamp and apply the aggregation."""
    grouped: dict[datetime, list[float]] = defaultdict(list)
    for sample in samples:
        grouped[truncate_timestamp(sample.timestamp, interval)].append(sample.value)

    aggregate = AGGREGATORS[aggregation]
    return [
        AggregateBucket(bucket_start=bucket, value=aggregate(values))
        for bucket, values in sorted(grouped.items(), key=lambda item: item[0], reverse=True)
    ]
