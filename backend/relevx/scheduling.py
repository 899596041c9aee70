"""Scheduling math for next runs, the frequency guard and search date windows.

All comparisons are made on UTC instants. Next-run candidates are built as
local wall-clock times in the project's IANA zone, so a daily 09:00 in
America/New_York stays 09:00 local across DST changes. Wall-clock times that
fall in a spring-forward gap resolve with fold=0 (pre-transition offset).
"""

from __future__ import annotations

import calendar
import re
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from relevx.models.project import as_utc, utcnow

ONE_DAY = timedelta(days=1)

_DELIVERY_TIME_RE = re.compile(r"^([0-1][0-9]|2[0-3]):([0-5][0-9])$")

# Lookback window used for search date filters
FREQUENCY_DAYS: dict[str, int] = {"daily": 1, "weekly": 7, "monthly": 30}
PREFERENCE_DAYS: dict[str, int] = {
    "last_24h": 1,
    "last_week": 7,
    "last_month": 30,
    "last_3months": 90,
    "last_year": 365,
    "custom": 7,
}


def validate_delivery_time(value: str) -> bool:
    """HH:MM (24h) on a 15-minute boundary."""
    match = _DELIVERY_TIME_RE.match(value or "")
    if not match:
        return False
    return int(match.group(2)) % 15 == 0


def validate_frequency(
    frequency: str,
    last_run_at: datetime | None = None,
    now: datetime | None = None,
) -> bool:
    """True if the project may run now.

    Daily is the maximum cadence regardless of `frequency`: a run is refused
    until a full day has passed since `last_run_at`.
    """
    if last_run_at is None:
        return True
    now = as_utc(now) or utcnow()
    return now - as_utc(last_run_at) >= ONE_DAY


def _add_months(anchor: date, months: int) -> date:
    month_index = anchor.month - 1 + months
    year = anchor.year + month_index // 12
    month = month_index % 12 + 1
    day = min(anchor.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def _advance(anchor: date, frequency: str, periods: int) -> date:
    if frequency == "daily":
        return anchor + timedelta(days=periods)
    if frequency == "weekly":
        return anchor + timedelta(weeks=periods)
    if frequency == "monthly":
        return _add_months(anchor, periods)
    raise ValueError(f"Unknown frequency: {frequency}")


def _parse_delivery_time(value: str) -> time:
    hours, minutes = value.split(":")
    return time(int(hours), int(minutes))


def calculate_next_run_at(
    frequency: str,
    delivery_time: str,
    tz_name: str,
    from_time: datetime | None = None,
) -> datetime:
    """Next UTC instant strictly after `from_time` at `delivery_time` local.

    Periods are counted from today's local date, so monthly runs keep their
    day-of-month (clamped to the month's length) instead of drifting.
    """
    tz = ZoneInfo(tz_name)
    now_utc = as_utc(from_time) or utcnow()
    at = _parse_delivery_time(delivery_time)
    anchor = now_utc.astimezone(tz).date()

    periods = 0
    while True:
        day = _advance(anchor, frequency, periods)
        candidate = datetime.combine(day, at).replace(tzinfo=tz, fold=0)
        candidate_utc = candidate.astimezone(timezone.utc)
        if candidate_utc > now_utc:
            return candidate_utc
        periods += 1


def is_project_due(next_run_at: datetime | None, now: datetime | None = None) -> bool:
    """Due once the scheduled slot has been reached. Never early."""
    if next_run_at is None:
        return False
    now = as_utc(now) or utcnow()
    return as_utc(next_run_at) <= now


def calculate_date_range(
    frequency: str, now: datetime | None = None
) -> tuple[datetime, datetime]:
    """(from, to) window covering one period of `frequency`, ending now."""
    now = as_utc(now) or utcnow()
    days = FREQUENCY_DAYS.get(frequency, 1)
    return now - timedelta(days=days), now


def calculate_date_range_by_preference(
    preference: str, now: datetime | None = None
) -> tuple[datetime, datetime]:
    now = as_utc(now) or utcnow()
    days = PREFERENCE_DAYS.get(preference, 7)
    return now - timedelta(days=days), now


def format_time_options() -> list[str]:
    """All HH:MM values in 15-minute increments, for time pickers."""
    return [f"{hour:02d}:{minute:02d}" for hour in range(24) for minute in range(0, 60, 15)]


def format_timestamp_in_timezone(value: datetime, tz_name: str) -> str:
    """Human-readable local rendering, e.g. 'March 10, 2024 at 09:00 EDT'."""
    local = as_utc(value).astimezone(ZoneInfo(tz_name))
    return f"{local.strftime('%B')} {local.day}, {local.year} at {local.strftime('%H:%M %Z')}"
