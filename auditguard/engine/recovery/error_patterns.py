"""
Error pattern recognition over the recent error log.

Groups buffered error events by event name; any event recurring at least
`min_occurrences` times inside the lookback window is a pattern. Each
pattern is dispatched to the strategy registered for its event name, or to
the default strategy, which only reports it.
"""

from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import structlog
from pydantic import BaseModel

from auditguard.utils.logging import ErrorLogBuffer

logger = structlog.get_logger()


class ErrorPattern(BaseModel):
    """A recurring error event."""

    event: str
    occurrences: int
    last_error: Optional[str] = None


RecoveryStrategy = Callable[[ErrorPattern], None]


def report_only(pattern: ErrorPattern) -> None:
    logger.info(
        "error_pattern_reported",
        pattern=pattern.event,
        occurrences=pattern.occurrences,
        last_error=pattern.last_error,
    )


class ErrorPatternAnalyzer:
    """
    Finds recurring errors and runs their recovery strategy.

    Attributes:
        buffer: Recent error events
        min_occurrences: Recurrence count that makes an event a pattern
        lookback_minutes: Only events this recent are considered
    """

    def __init__(
        self,
        buffer: ErrorLogBuffer,
        min_occurrences: int = 3,
        lookback_minutes: int = 60,
    ):
        self.buffer = buffer
        self.min_occurrences = min_occurrences
        self.lookback_minutes = lookback_minutes
        self._strategies: dict[str, RecoveryStrategy] = {}

    def register(self, event: str, strategy: RecoveryStrategy) -> None:
        """Route patterns of `event` to `strategy`."""
        self._strategies[event] = strategy

    def find_patterns(self, now: Optional[datetime] = None) -> list[ErrorPattern]:
        """Recurring events in the lookback window, most frequent first."""
        now = now or datetime.now(timezone.utc)
        records = self.buffer.recent(since=now - timedelta(minutes=self.lookback_minutes))

        counts = Counter(r["event"] for r in records)
        last_errors = {r["event"]: r.get("error") for r in records}

        return [
            ErrorPattern(event=event, occurrences=count, last_error=last_errors.get(event))
            for event, count in counts.most_common()
            if count >= self.min_occurrences
        ]

    def analyze_and_recover(self, now: Optional[datetime] = None) -> list[str]:
        """
        Run the matched strategy for every recurring pattern.

        Returns:
            Event names of the patterns that were handled

        Raises:
            RuntimeError: If any strategy failed (after running all of them)
        """
        patterns = self.find_patterns(now)
        if not patterns:
            logger.info("error_patterns_none_found")
            return []

        handled, failed = [], []
        for pattern in patterns:
            strategy = self._strategies.get(pattern.event, report_only)
            try:
                strategy(pattern)
                handled.append(pattern.event)
            except Exception as e:
                logger.warning("error_pattern_strategy_failed", pattern=pattern.event, error=str(e))
                failed.append(pattern.event)

        if failed:
            raise RuntimeError(f"recovery strategy failed for: {', '.join(failed)}")
        return handled
