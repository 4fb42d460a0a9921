"""
Property-based tests using Hypothesis for metric bucketing and storage.

These verify invariants of timestamp truncation, bucket aggregation and the
sample round trip through the store across generated inputs.
"""

import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

import hypothesis.strategies as st
from hypothesis import HealthCheck, given, settings

from auditguard.engine.metrics.sampler import MetricSampler, aggregate_samples, truncate_timestamp
from auditguard.models.enums import Aggregation, Interval
from auditguard.models.metrics import MetricSample
from auditguard.storage.sqlite_storage import SQLiteStorage

utc_datetimes = st.datetimes(
    min_value=datetime(2000, 1, 1),
    max_value=datetime(2099, 12, 31),
    timezones=st.just(timezone.utc),
)

INTERVAL_SPAN = {
    Interval.HOUR: timedelta(hours=1),
    Interval.DAY: timedelta(days=1),
    Interval.WEEK: timedelta(weeks=1),
    Interval.MONTH: timedelta(days=31),
}


# =============================================================================
# Truncation
# =============================================================================


@given(ts=utc_datetimes, interval=st.sampled_from(list(Interval)))
@settings(max_examples=100)
def test_prop_bucket_start_bounds(ts: datetime, interval: Interval):
    """A bucket starts at or before the timestamp and less than one span earlier."""
    bucket = truncate_timestamp(ts, interval)

    assert bucket <= ts
    assert ts - bucket < INTERVAL_SPAN[interval]


@given(ts=utc_datetimes, interval=st.sampled_from(list(Interval)))
@settings(max_examples=100)
def test_prop_truncation_is_idempotent(ts: datetime, interval: Interval):
    bucket = truncate_timestamp(ts, interval)

    assert truncate_timestamp(bucket, interval) == bucket


@given(ts=utc_datetimes)
@settings(max_examples=100)
def test_prop_week_buckets_start_on_monday(ts: datetime):
    bucket = truncate_timestamp(ts, Interval.WEEK)

    assert bucket.isoweekday() == 1
    assert bucket.isocalendar()[:2] == ts.isocalendar()[:2]


# =============================================================================
# Aggregation
# =============================================================================


samples_strategy = st.lists(
    st.tuples(utc_datetimes, st.integers(min_value=-1_000_000, max_value=1_000_000)),
    min_size=1,
    max_size=40,
)


def to_samples(pairs):
    return [MetricSample(name="prop_metric", value=float(v), timestamp=ts) for ts, v in pairs]


@given(pairs=samples_strategy, interval=st.sampled_from(list(Interval)))
@settings(max_examples=100)
def test_prop_counts_cover_every_sample(pairs, interval: Interval):
    buckets = aggregate_samples(to_samples(pairs), Aggregation.COUNT, interval)

    assert sum(b.value for b in buckets) == len(pairs)


@given(pairs=samples_strategy, interval=st.sampled_from(list(Interval)))
@settings(max_examples=100)
def test_prop_sum_is_preserved(pairs, interval: Interval):
    buckets = aggregate_samples(to_samples(pairs), Aggregation.SUM, interval)

    assert sum(b.value for b in buckets) == sum(v for _, v in pairs)


@given(pairs=samples_strategy, interval=st.sampled_from(list(Interval)))
@settings(max_examples=100)
def test_prop_average_between_min_and_max(pairs, interval: Interval):
    samples = to_samples(pairs)
    lows = {b.bucket_start: b.value for b in aggregate_samples(samples, Aggregation.MIN, interval)}
    highs = {b.bucket_start: b.value for b in aggregate_samples(samples, Aggregation.MAX, interval)}

    for bucket in aggregate_samples(samples, Aggregation.AVG, interval):
        assert lows[bucket.bucket_start] <= bucket.value <= highs[bucket.bucket_start]


@given(pairs=samples_strategy, interval=st.sampled_from(list(Interval)))
@settings(max_examples=100)
def test_prop_buckets_newest_first_and_distinct(pairs, interval: Interval):
    starts = [b.bucket_start for b in aggregate_samples(to_samples(pairs), Aggregation.COUNT, interval)]

    assert starts == sorted(set(starts), reverse=True)


# =============================================================================
# Store round trip
# =============================================================================


@given(
    values=st.lists(
        st.floats(min_value=-1e12, max_value=1e12, allow_nan=False, allow_infinity=False),
        min_size=1,
        max_size=10,
    ),
    labels=st.dictionaries(
        st.text(min_size=1, max_size=8), st.text(max_size=8), max_size=3
    ),
)
@settings(max_examples=25, deadline=None, suppress_health_check=[HealthCheck.too_slow])
def test_prop_recorded_samples_read_back_newest_first(values, labels):
    base = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)

    with tempfile.TemporaryDirectory() as tmp:
        store = SQLiteStorage(Path(tmp) / "prop.sqlite")
        try:
            sampler = MetricSampler(store, clock=lambda: base)
            for i, value in enumerate(values):
                sampler.record_metric("prop_metric", value, labels, timestamp=base + timedelta(seconds=i))

            samples = sampler.get_metrics("prop_metric")
        finally:
            store.close()

    assert [s.value for s in samples] == list(reversed(values))
    assert all(s.labels == labels for s in samples)
    assert samples[0].timestamp == base + timedelta(seconds=len(values) - 1)
