"""
Clocks

All engine timestamps are naive UTC datetimes, read through a clock so
sweeps and temporal rules can be driven deterministically.
"""
from datetime import datetime, timedelta, timezone


class SystemClock:
    """Wall clock."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc).replace(tzinfo=None)


class ManualClock:
    """Clock that only moves when told to. Used by tests and dry runs."""

    def __init__(self, start: datetime):
        self._now = start

    def now(self) -> datetime:
        return self._now

    def advance(self, **kwargs) -> datetime:
        self._now = self._now + timedelta(**kwargs)
        return self._now

    def set(self, value: datetime) -> None:
        self._now = value
