"""Time sources. Everything time-dependent takes a Clock so tests can drive it."""

from datetime import datetime, date, timedelta, UTC
from threading import Lock
from typing import Optional, Protocol


class Clock(Protocol):
    """Time source interface."""

    def now(self) -> datetime:
        ...


class SystemClock:
    """Wall-clock UTC time."""

    def now(self) -> datetime:
        return datetime.now(UTC)


class ManualClock:
    """
    Clock that only moves when told to.

    Used for simulations and for testing TTL expiry and day boundaries.
    """

    def __init__(self, start: Optional[datetime] = None):
        self._now = start or datetime(2025, 1, 6, 12, 0, tzinfo=UTC)
        self._lock = Lock()

    def now(self) -> datetime:
        with self._lock:
            return self._now

    def advance(self, seconds: float = 0.0, **kwargs) -> datetime:
        """Move forward by seconds (or any timedelta keyword)."""
        with self._lock:
            self._now = self._now + timedelta(seconds=seconds, **kwargs)
            return self._now

    def set(self, moment: datetime) -> None:
        with self._lock:
            self._now = moment


def utc_date(moment: datetime) -> date:
    """Calendar date (UTC) of an instant."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return moment.astimezone(UTC).date()


def date_key(day: date) -> str:
    """YYYY-MM-DD."""
    return day.isoformat()
