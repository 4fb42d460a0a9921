"""
Store Monitoring.

Components:
    HealthProbe: Liveness, threshold, structural and size checks
    StoreOptimizer: Slow-cadence optimization sweep

Example:
    >>> from auditguard.engine.monitors import HealthProbe
    >>> probe = HealthProbe(storage, sampler, runtime, settings)
    >>> probe.check_fast()
    [<Condition.NONE: 'none'>]
"""

from .health_probe import HealthProbe
from .optimizer import StoreOptimizer, format_bytes

__all__ = [
    "HealthProbe",
    "StoreOptimizer",
    "format_bytes",
]
