"""
Payout Calendar
ISO-week and calendar-month boundaries, all in UTC.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone


def _as_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def utc_day(dt: datetime) -> date:
    return _as_utc(dt).date()


def week_start(dt: datetime) -> datetime:
    """Monday 00:00 UTC of the ISO week containing `dt`."""
    dt = _as_utc(dt)
    monday = dt - timedelta(days=dt.weekday())
    return monday.replace(hour=0, minute=0, second=0, microsecond=0)


def iso_week_key(dt: datetime) -> str:
    """ISO week key like 2026-W42. Uses the ISO year, not the calendar year."""
    iso_year, iso_week, _ = _as_utc(dt).isocalendar()
    return f"{iso_year}-W{iso_week:02d}"


def month_start(dt: datetime) -> datetime:
    dt = _as_utc(dt)
    return dt.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def month_key(dt: datetime) -> str:
    dt = _as_utc(dt)
    return f"{dt.year}-{dt.month:02d}"


@dataclass(frozen=True)
class PayoutWindow:
    """Half-open [start, end) window of the week being paid out."""
    start: datetime
    end: datetime
    week_key: str


def payout_window(now: datetime) -> PayoutWindow:
    """
    The previous ISO week relative to `now`.
    Freeze, review and payout all run against this window during one week.
    """
    this_monday = week_start(now)
    last_monday = this_monday - timedelta(days=7)
    return PayoutWindow(start=last_monday, end=this_monday, week_key=iso_week_key(last_monday))


def current_week_window(now: datetime) -> PayoutWindow:
    """The ISO week containing `now`; budget cycles are opened against it."""
    monday = week_start(now)
    return PayoutWindow(start=monday, end=monday + timedelta(days=7), week_key=iso_week_key(monday))
