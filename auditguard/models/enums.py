"""
Enumeration types for the audit store watchdog.

All enums inherit from str to ensure JSON serialization compatibility.
"""

from enum import Enum


class Condition(str, Enum):
    """
    Detected degradation categories reported by the health probe.

    Each non-NONE condition drives exactly one escalation path in the
    recovery orchestrator.
    """

    SLOW_RESPONSES = "slow_responses"
    HIGH_ERROR_RATE = "high_error_rate"
    HIGH_MEMORY = "high_memory"
    INDEX_CORRUPTION = "index_corruption"
    OVERSIZED_STORE = "oversized_store"
    DATABASE_ERROR = "database_error"
    NONE = "none"


class Trigger(str, Enum):
    """What opened a recovery attempt: a probe condition or a direct request."""

    SLOW_RESPONSES = "slow_responses"
    HIGH_ERROR_RATE = "high_error_rate"
    HIGH_MEMORY = "high_memory"
    INDEX_CORRUPTION = "index_corruption"
    OVERSIZED_STORE = "oversized_store"
    DATABASE_ERROR = "database_error"
    SCHEDULE = "schedule"
    OPERATOR = "operator"


class RecoveryAction(str, Enum):
    """Remediation sequences the orchestrator can execute."""

    PERFORMANCE_TUNING = "performance_tuning"
    ERROR_RATE_RECOVERY = "error_rate_recovery"
    MEMORY_RELIEF = "memory_relief"
    DATABASE_REPAIR = "database_repair"
    ARCHIVE_AND_COMPACT = "archive_and_compact"
    OPTIMIZATION_SWEEP = "optimization_sweep"
    BACKUP = "backup"
    RESTORE = "restore"


class Aggregation(str, Enum):
    """Aggregation functions for windowed metric queries."""

    SUM = "sum"
    AVG = "avg"
    MIN = "min"
    MAX = "max"
    COUNT = "count"


class Interval(str, Enum):
    """Bucket granularity for windowed metric queries."""

    HOUR = "hour"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"


class NotificationPriority(str, Enum):
    """Priority of an outcome report sent to the notification sink."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class RestoreState(str, Enum):
    """States of the restore state machine."""

    CHECK_INTEGRITY = "check_integrity"
    REPAIR = "repair"
    FIND_BACKUP = "find_backup"
    DECRYPT = "decrypt"
    SWAP_IN = "swap_in"
    REVALIDATE = "revalidate"
    CLEANUP = "cleanup"
    REVERT_SWAP = "revert_swap"
    DONE = "done"
    FAILED = "failed"
