"""Metric sampling and windowed aggregation."""

from .sampler import MetricSampler, aggregate_samples, truncate_timestamp

__all__ = ["MetricSampler", "aggregate_samples", "truncate_timestamp"]
