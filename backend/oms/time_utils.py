from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional

from flask import current_app


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def business_timezone(offset_hours: int) -> timezone:
    return timezone(timedelta(hours=offset_hours), name=f"UTC{offset_hours:+d}")


class BusinessClock:
    """
    Source of "today" for every same-day / future / past decision.

    Business dates are calendar dates in a fixed-offset timezone; the host
    machine's local time is never consulted.
    """

    def __init__(self, utc_offset_hours: int = 7):
        self.tz = business_timezone(utc_offset_hours)

    def now(self) -> datetime:
        return datetime.now(self.tz)

    def today(self) -> date:
        return self.now().date()

    def to_business_date(self, value: datetime) -> date:
        """Truncate a datetime to its business date (naive values are UTC)."""
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(self.tz).date()


class FixedClock(BusinessClock):
    """Clock pinned to a business date; used by tests and replay tooling."""

    def __init__(self, today: date, utc_offset_hours: int = 7):
        super().__init__(utc_offset_hours)
        self._today = today

    def now(self) -> datetime:
        return datetime.combine(self._today, time(12, 0), tzinfo=self.tz)

    def today(self) -> date:
        return self._today

    def set(self, today: date) -> None:
        self._today = today

    def advance(self, days: int = 1) -> date:
        self._today = self._today + timedelta(days=days)
        return self._today


def get_clock() -> BusinessClock:
    """The clock installed on the current app by create_app()."""
    return current_app.extensions["business_clock"]


def parse_iso_date(value: Optional[str]) -> Optional[date]:
    """
    Parse a YYYY-MM-DD string (or the date part of an ISO datetime).

    - None / "" -> None
    """
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None
    return date.fromisoformat(s[:10])


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """
    Serializes datetime to ISO-8601 with trailing 'Z'.
    If dt is naive, it is treated as UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt_utc = dt.astimezone(timezone.utc).replace(microsecond=0)
    return dt_utc.isoformat().replace("+00:00", "Z")


def to_iso_date(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value else None
