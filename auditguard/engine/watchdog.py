"""
Watchdog — three repeating timers driving detection and remediation.

    fast    liveness + latency / error-rate / memory thresholds
    medium  index structure + store size
    slow    full optimization sweep

Each timer is an asyncio task that sleeps, runs one cycle to completion,
and sleeps again, so ticks of the same timer never overlap. Blocking probe
work runs in a worker thread. Conditions found by a cycle go to the
orchestrator, whose guard drops anything that arrives mid-recovery.
"""

import asyncio
from typing import Awaitable, Callable, Optional

import structlog

from auditguard.config import Settings
from auditguard.engine.monitors.health_probe import HealthProbe
from auditguard.engine.recovery.orchestrator import RecoveryOrchestrator
from auditguard.models.enums import Trigger
from auditguard.models.recovery import RecoveryAttempt

logger = structlog.get_logger()


class Watchdog:
    """
    Owns the three timer tasks.

    Attributes:
        probe: Health checks
        orchestrator: Remediation entry point
        fast_interval / medium_interval / slow_interval: Cadences in seconds
    """

    def __init__(
        self,
        probe: HealthProbe,
        orchestrator: RecoveryOrchestrator,
        settings: Settings,
    ):
        self.probe = probe
        self.orchestrator = orchestrator
        self.fast_interval = settings.fast_interval_seconds
        self.medium_interval = settings.medium_interval_seconds
        self.slow_interval = settings.slow_interval_seconds
        self._tasks: dict[str, asyncio.Task] = {}

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks.values())

    def start(self) -> None:
        """Schedule the timers on the running event loop (idempotent)."""
        if self.running:
            return
        timers: dict[str, tuple[float, Callable[[], Awaitable[object]]]] = {
            "fast": (self.fast_interval, self.run_fast_cycle),
            "medium": (self.medium_interval, self.run_medium_cycle),
            "slow": (self.slow_interval, self.run_slow_cycle),
        }
        self._tasks = {
            name: asyncio.create_task(self._timer(name, interval, cycle), name=f"watchdog-{name}")
            for name, (interval, cycle) in timers.items()
        }
        logger.info(
            "watchdog_started",
            fast_seconds=self.fast_interval,
            medium_seconds=self.medium_interval,
            slow_seconds=self.slow_interval,
        )

    async def stop(self) -> None:
        """Cancel the timers and wait for them to unwind."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks = {}
        logger.info("watchdog_stopped")

    async def _timer(
        self,
        name: str,
        interval: float,
        cycle: Callable[[], Awaitable[object]],
    ) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await cycle()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                # Transient failures are retried on the next tick
                logger.error("watchdog_cycle_failed", timer=name, error=str(e), exc_info=True)

    # =========================================================================
    # Cycles
    # =========================================================================

    async def run_fast_cycle(self) -> list[RecoveryAttempt]:
        conditions = await asyncio.to_thread(self.probe.check_fast)
        return await self.orchestrator.handle_all(conditions)

    async def run_medium_cycle(self) -> list[RecoveryAttempt]:
        conditions = await asyncio.to_thread(self.probe.check_medium)
        return await self.orchestrator.handle_all(conditions)

    async def run_slow_cycle(self) -> Optional[RecoveryAttempt]:
        return await self.orchestrator.run_optimization(Trigger.SCHEDULE)
