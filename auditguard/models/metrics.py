"""
Metric models for the audit store watchdog.

Samples are append-only records in the `audit_metrics` table; aggregate
buckets are derived on every query and never stored.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator


class MetricSample(BaseModel):
    """
    One named, timestamped, labeled numeric sample.

    Attributes:
        name: Metric name (e.g., "audit_search_duration_ms")
        value: Sample value
        labels: Free-form string labels, round-tripped unchanged
        timestamp: When the sample was recorded (UTC)
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(description="Metric name")
    value: float = Field(description="Sample value")
    labels: dict[str, str] = Field(default_factory=dict, description="Sample labels")
    timestamp: datetime = Field(description="Recording time (UTC)")

    @field_validator("name")
    @classmethod
    def validate_name_not_empty(cls, v: str) -> str:
        """Ensure metric name is not empty."""
        if not v or not v.strip():
            raise ValueError("Metric name cannot be empty")
        return v


class AggregateBucket(BaseModel):
    """Aggregated value for one time bucket."""

    model_config = ConfigDict(frozen=True)

    bucket_start: datetime = Field(description="Start of the bucket (UTC)")
    value: float = Field(description="Aggregated value")


class PerformanceSnapshot(BaseModel):
    """
    Point-in-time performance figures used by the threshold check.

    Attributes:
        avg_response_time_ms: Mean latency over the window (0.0 when no samples)
        error_count: Sum of error counter samples in the window
        request_count: Sum of request counter samples in the window
        error_rate: error_count / request_count, 0.0 when there were no requests
        memory_ratio: Process memory in use relative to the configured limit
    """

    avg_response_time_ms: float = 0.0
    error_count: float = 0.0
    request_count: float = 0.0
    error_rate: float = 0.0
    memory_ratio: float = 0.0
