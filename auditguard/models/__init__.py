"""
Domain models for the audit store watchdog.

All models use Pydantic for validation and serialization.
"""

from .backup import BackupArtifact
from .enums import (
    Aggregation,
    Condition,
    Interval,
    NotificationPriority,
    RecoveryAction,
    RestoreState,
    Trigger,
)
from .metrics import AggregateBucket, MetricSample, PerformanceSnapshot
from .notifications import Notification
from .recovery import (
    IndexStatistic,
    OptimizationResult,
    RecoveryAttempt,
    RestoreResult,
    StepOutcome,
)

__all__ = [
    "Aggregation",
    "AggregateBucket",
    "BackupArtifact",
    "Condition",
    "IndexStatistic",
    "Interval",
    "MetricSample",
    "Notification",
    "NotificationPriority",
    "OptimizationResult",
    "PerformanceSnapshot",
    "RecoveryAction",
    "RecoveryAttempt",
    "RestoreResult",
    "RestoreState",
    "StepOutcome",
    "Trigger",
]
