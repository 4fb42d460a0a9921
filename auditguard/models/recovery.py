"""
Recovery and structural health models.

RecoveryAttempt lives in memory only; the orchestrator is its sole writer.
"""

from datetime import datetime, timezone
from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, Field

from .enums import RecoveryAction, RestoreState, Trigger


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class IndexStatistic(BaseModel):
    """
    Read-only snapshot of one index's statistics as reported by the engine.

    Attributes:
        table: Table the index belongs to
        index: Index name
        idx_entries: Number of entries in the index
        avg_seek_time: Average number of entries visited per key lookup
    """

    table: str
    index: str
    idx_entries: int = Field(ge=0)
    avg_seek_time: float = Field(ge=0.0)

    @property
    def seek_ratio(self) -> float:
        """avg_seek_time / idx_entries, 0.0 for an empty index."""
        if self.idx_entries <= 0:
            return 0.0
        return self.avg_seek_time / self.idx_entries


class StepOutcome(BaseModel):
    """Result of one step in a remediation sequence."""

    name: str
    success: bool
    error: Optional[str] = None
    duration_ms: float = 0.0


class RecoveryAttempt(BaseModel):
    """
    One remediation attempt from threshold breach to completion.

    Attributes:
        attempt_id: Unique identifier
        trigger: Condition or request that opened the attempt
        action: Remediation sequence chosen for the trigger
        started_at: When the attempt was opened
        finished_at: When the attempt was closed (None while running)
        success: Whether the attempt recovered (no fatal step failure)
        error: First fatal step error, if any
        steps: Ordered outcomes of the executed steps
        details: Action-specific results (artifact path, rows archived, ...)
    """

    attempt_id: str = Field(default_factory=lambda: str(uuid4()))
    trigger: Trigger
    action: RecoveryAction
    started_at: datetime = Field(default_factory=utcnow)
    finished_at: Optional[datetime] = None
    success: bool = False
    error: Optional[str] = None
    steps: list[StepOutcome] = Field(default_factory=list)
    details: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_open(self) -> bool:
        return self.finished_at is None

    def record(self, outcome: StepOutcome, fatal: bool = True) -> None:
        """Append a step outcome; only a fatal failure sets the attempt error."""
        self.steps.append(outcome)
        if fatal and not outcome.success and self.error is None:
            self.error = f"{outcome.name}: {outcome.error}"


class RestoreResult(BaseModel):
    """Outcome of a run of the restore state machine."""

    success: bool
    state: RestoreState
    message: str
    backup_path: Optional[str] = None
    states_visited: list[RestoreState] = Field(default_factory=list)
    duration_ms: float = 0.0


class OptimizationResult(BaseModel):
    """Before/after figures of an optimization sweep."""

    success: bool
    duration_ms: float
    size_reduction_bytes: Optional[int] = None
    query_time_improvement_ms: Optional[float] = None
    fragmentation_reduced: Optional[float] = None
    error: Optional[str] = None
