"""
Notification Sink

Outbound notifications (admin alerts, legal team, employer notices).
Delivery channels are outside the engine; the default sink logs.
"""
import logging
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class NotificationSink:
    """Interface. Implementations must not raise on delivery failure."""

    def notify(
        self,
        channel: str,
        subject: str,
        body: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> None:
        raise NotImplementedError


class LoggingNotificationSink(NotificationSink):
    """Writes every notification to the log."""

    def notify(self, channel, subject, body, data=None):
        logger.warning(f"[{channel}] {subject}: {body}")


class RecordingNotificationSink(NotificationSink):
    """Keeps notifications in memory. Used by dry runs and tests."""

    def __init__(self):
        self.sent: List[Dict[str, Any]] = []

    def notify(self, channel, subject, body, data=None):
        self.sent.append({
            "channel": channel,
            "subject": subject,
            "body": body,
            "data": data or {},
        })

    def for_channel(self, channel: str) -> List[Dict[str, Any]]:
        return [n for n in self.sent if n["channel"] == channel]
