"""
Engine Context

One explicit bundle of collaborators (session, clock, notifier,
settings) handed to every service. No module-level singletons.
"""
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy.orm import Session

from .clock import SystemClock
from .config import Settings
from .services.notifications import NotificationSink, LoggingNotificationSink


@dataclass
class EngineContext:
    db: Session
    clock: object = field(default_factory=SystemClock)
    notifier: NotificationSink = field(default_factory=LoggingNotificationSink)
    settings: Settings = field(default_factory=Settings)

    def now(self):
        return self.clock.now()


def build_context(
    db: Session,
    clock=None,
    notifier: Optional[NotificationSink] = None,
    settings: Optional[Settings] = None,
) -> EngineContext:
    """Build a context with production defaults for anything not given."""
    return EngineContext(
        db=db,
        clock=clock or SystemClock(),
        notifier=notifier or LoggingNotificationSink(),
        settings=settings or Settings(),
    )
