"""Time utilities: UTC timestamps, injectable clocks and stay date helpers."""

from datetime import date, datetime, timedelta, timezone
from typing import Callable, Iterator

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Return current UTC timestamp (timezone-aware)."""
    return datetime.now(timezone.utc)


class ManualClock:
    """Clock whose time only moves when told to. Used to drive TTLs in tests."""

    def __init__(self, start: datetime | None = None) -> None:
        self._now = start or datetime(2026, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self._now

    def advance(self, **kwargs: float) -> None:
        self._now += timedelta(**kwargs)


def nights(checkin: date, checkout: date) -> Iterator[date]:
    """Yield every night of a stay: checkin inclusive, checkout exclusive."""
    current = checkin
    while current < checkout:
        yield current
        current += timedelta(days=1)


def days_inclusive(start: date, end: date) -> Iterator[date]:
    """Yield every date from start to end, both inclusive."""
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def js_weekday(d: date) -> int:
    """Day of week with 0 = Sunday ... 6 = Saturday (channel convention)."""
    return (d.weekday() + 1) % 7
