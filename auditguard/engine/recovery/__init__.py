"""
Remediation.

Components:
    RecoveryOrchestrator: Mutually exclusive remediation for detected conditions
    ErrorPatternAnalyzer: Recurring error detection over the recent error log
"""

from .error_patterns import ErrorPattern, ErrorPatternAnalyzer, report_only
from .orchestrator import CONDITION_ACTIONS, RecoveryOrchestrator, StepFailed

__all__ = [
    "CONDITION_ACTIONS",
    "ErrorPattern",
    "ErrorPatternAnalyzer",
    "RecoveryOrchestrator",
    "StepFailed",
    "report_only",
]
