"""
Watchdog engine components.

- Metrics: append-only samples and windowed aggregates
- Monitors: health probe and optimization sweep
- Recovery: mutually exclusive remediation and error-pattern hooks
- Backup: encrypted, checksummed artifacts and integrity-first restore
- Watchdog: the three timers that drive detection

Subpackages are imported directly; this module stays import-free so the
components can depend on each other without cycles.
"""

__version__ = "1.0.0"
