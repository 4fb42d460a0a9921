"""
System status and maintenance router.

Wired to:
- HealthProbe for the live snapshot
- RecoveryOrchestrator for the recovery flag, attempt history and the
  operator-triggered optimization sweep
"""

import asyncio
import time

from fastapi import APIRouter, Depends

from auditguard.container import Services
from auditguard.models.enums import Trigger
from auditguard.utils.logging import get_logger

from .dependencies import busy_conflict, get_services

logger = get_logger(__name__)
router = APIRouter()

# Track startup time for uptime calculation
_startup_time = time.time()


@router.get("/status")
async def system_status(
    history_limit: int = 10,
    services: Services = Depends(get_services),
):
    """
    Get watchdog status.
    Reports the live probe snapshot, the recovery flag and recent attempts.
    """
    history_limit = max(1, min(services.settings.attempt_history_size, history_limit))
    orchestrator = services.orchestrator
    snapshot = await asyncio.to_thread(services.probe.snapshot)
    current = orchestrator.current_attempt

    return {
        "success": True,
        "data": {
            "uptime_seconds": round(time.time() - _startup_time, 1),
            "watchdog_running": services.watchdog.running,
            "is_recovering": orchestrator.is_recovering,
            "current_attempt": current.model_dump(mode="json") if current else None,
            "store": snapshot,
            "size_limit_bytes": services.settings.db_size_limit_bytes,
            "recent_attempts": [
                a.model_dump(mode="json") for a in orchestrator.history()[:history_limit]
            ],
        },
    }


@router.post("/optimize")
async def run_optimization(services: Services = Depends(get_services)):
    """Run the optimization sweep now, under the recovery guard."""
    logger.info("optimization_requested")
    attempt = await services.orchestrator.run_optimization(Trigger.OPERATOR)
    if attempt is None:
        raise busy_conflict("optimization")
    return {"success": attempt.success, "data": attempt.model_dump(mode="json")}
