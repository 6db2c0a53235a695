"""
Time providers.

All day-scoping is evaluated against an injected clock so the current
site-local day is an explicit input rather than ambient wall-clock state.
"""

from datetime import date, datetime, timezone, tzinfo
from typing import Optional
from zoneinfo import ZoneInfo


class Clock:
    """Wall clock bound to a site timezone."""

    def __init__(self, tz: Optional[tzinfo] = None):
        self.tz = tz or timezone.utc

    @classmethod
    def for_zone(cls, name: str) -> "Clock":
        if name.upper() == "UTC":
            return cls(timezone.utc)
        return cls(ZoneInfo(name))

    def now(self) -> datetime:
        return datetime.now(self.tz)

    def today(self) -> date:
        """Current calendar date in the site timezone."""
        return self.now().date()


class FixedClock(Clock):
    """Clock pinned to a given instant. Used by tests and replay tooling."""

    def __init__(self, instant: datetime, tz: Optional[tzinfo] = None):
        if instant.tzinfo is None:
            instant = instant.replace(tzinfo=tz or timezone.utc)
        super().__init__(tz or instant.tzinfo)
        self._instant = instant

    def now(self) -> datetime:
        return self._instant.astimezone(self.tz)

    def set(self, instant: datetime) -> None:
        if instant.tzinfo is None:
            instant = instant.replace(tzinfo=self.tz)
        self._instant = instant
