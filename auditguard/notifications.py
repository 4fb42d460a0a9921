"""
Notification sink boundary.

Outcome reports leave the watchdog through a NotificationSink. Delivery is
someone else's problem: a sink that fails is logged locally and never
affects the recovery attempt that produced the report.
"""

from typing import Protocol, runtime_checkable

import structlog

from auditguard.models.enums import NotificationPriority
from auditguard.models.notifications import Notification

logger = structlog.get_logger()


@runtime_checkable
class NotificationSink(Protocol):
    """Anything that accepts a structured outcome report."""

    def send(self, notification: Notification) -> None: ...


class LoggingNotificationSink:
    """
    Default sink: writes each report as a structured log event.

    Reports stay below error level so they do not feed the error-log
    buffer scanned for recurring patterns.
    """

    _LEVELS = {
        NotificationPriority.LOW: "info",
        NotificationPriority.MEDIUM: "info",
        NotificationPriority.HIGH: "warning",
    }

    def send(self, notification: Notification) -> None:
        log = getattr(logger, self._LEVELS[notification.priority])
        log(
            "notification",
            title=notification.title,
            body=notification.body,
            priority=notification.priority.value,
            type=notification.type,
        )


def notify_safely(sink: NotificationSink, notification: Notification) -> bool:
    """
    Deliver a report, swallowing delivery failures.

    Returns:
        True if the sink accepted the report
    """
    try:
        sink.send(notification)
        return True
    except Exception as e:
        logger.warning(
            "notification_delivery_failed",
            title=notification.title,
            error=str(e),
        )
        return False
