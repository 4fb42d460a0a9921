"""
Process-level controls used by remediation: cache clearing, garbage
collection, memory measurement and process restart.
"""

import gc
import os
import sys
from typing import Callable, Optional

import psutil
import structlog

from auditguard.storage.base import StorageBackend

logger = structlog.get_logger()


def _exec_self() -> None:
    """Replace the current process image with a fresh copy of itself."""
    os.execv(sys.executable, [sys.executable] + sys.argv)


class RuntimeControls:
    """
    Knobs the orchestrator turns on the running process.

    Caches are registered by the components that own them; clearing calls
    each registered clearer in turn. Restart closes the store handle before
    handing control to `restarter`, which by default re-executes the
    interpreter with the original arguments.

    Attributes:
        storage: Live store, closed before a restart
        memory_limit_bytes: Memory ratio denominator (0 = physical memory)
    """

    def __init__(
        self,
        storage: StorageBackend,
        memory_limit_bytes: int = 0,
        restarter: Optional[Callable[[], None]] = None,
    ):
        self.storage = storage
        self.memory_limit_bytes = memory_limit_bytes
        self._restarter = restarter or _exec_self
        self._cache_clearers: dict[str, Callable[[], None]] = {}
        self._process = psutil.Process()

    def register_cache(self, name: str, clearer: Callable[[], None]) -> None:
        """Register a callable that empties one in-memory cache."""
        self._cache_clearers[name] = clearer

    def clear_caches(self) -> list[str]:
        """
        Empty every registered cache.

        Returns:
            Names of the caches that were cleared

        Raises:
            RuntimeError: If any clearer failed (after trying all of them)
        """
        cleared, failed = [], []
        for name, clearer in self._cache_clearers.items():
            try:
                clearer()
                cleared.append(name)
            except Exception as e:
                logger.error("cache_clear_failed", cache=name, error=str(e))
                failed.append(name)
        logger.info("caches_cleared", cleared=cleared, failed=failed)
        if failed:
            raise RuntimeError(f"failed to clear caches: {', '.join(failed)}")
        return cleared

    def collect_garbage(self) -> int:
        """Force a full garbage collection pass."""
        collected = gc.collect()
        logger.info("garbage_collected", objects=collected)
        return collected

    def memory_ratio(self) -> float:
        """Resident memory of this process relative to the memory limit."""
        limit = self.memory_limit_bytes or psutil.virtual_memory().total
        if limit <= 0:
            return 0.0
        return self._process.memory_info().rss / limit

    def restart_process(self) -> None:
        """Close the store handle and restart the process."""
        logger.warning("process_restart_requested", pid=os.getpid())
        self.storage.close()
        self._restarter()
