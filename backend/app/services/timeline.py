"""Date arithmetic shared by the calendar views, event model and layout engine."""
from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import List, Tuple

DAYS_PER_WEEK = 7
HOURS_PER_DAY = 24
MINUTES_PER_DAY = HOURS_PER_DAY * 60


@dataclass(frozen=True)
class DateRange:
    """Inclusive span of calendar days."""

    start: date
    end: date

    def days(self) -> List[date]:
        return _each_day(self.start, self.end)


def week_range(day: date, week_starts_on: int = 0) -> DateRange:
    """Return the calendar week containing `day`.

    `week_starts_on` uses `date.weekday()` numbering (0 = Monday, 6 = Sunday).
    """
    offset = (day.weekday() - week_starts_on) % DAYS_PER_WEEK
    start = day - timedelta(days=offset)
    return DateRange(start=start, end=start + timedelta(days=DAYS_PER_WEEK - 1))


def month_range(day: date) -> DateRange:
    """Return the first and last day of the month containing `day`."""
    last_day = calendar.monthrange(day.year, day.month)[1]
    return DateRange(start=day.replace(day=1), end=day.replace(day=last_day))


def week_days(day: date, week_starts_on: int = 0) -> List[date]:
    """The 7 consecutive days of the week containing `day`."""
    return week_range(day, week_starts_on).days()


def month_grid_days(day: date, week_starts_on: int = 0) -> List[date]:
    """Days for a month grid, padded with the previous month's trailing days.

    The grid starts on the first day of the week and always holds whole weeks.
    """
    month = month_range(day)
    leading = (month.start.weekday() - week_starts_on) % DAYS_PER_WEEK
    grid_start = month.start - timedelta(days=leading)

    weeks_needed = -(-(leading + month.end.day) // DAYS_PER_WEEK)
    grid_end = grid_start + timedelta(days=weeks_needed * DAYS_PER_WEEK - 1)
    return _each_day(grid_start, grid_end)


def hour_slots() -> List[str]:
    """Row labels for day and week grids: "00:00" through "23:00"."""
    return [f"{hour:02d}:00" for hour in range(HOURS_PER_DAY)]


def day_bounds(day: date, tz: tzinfo = timezone.utc) -> Tuple[datetime, datetime]:
    """Return `[00:00, next 00:00)` for `day` in `tz`, expressed in UTC."""
    start = datetime.combine(day, time.min, tzinfo=tz)
    end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Normalize a timestamp to aware UTC.

    Naive values are read as UTC; SQLite hands back DateTime(timezone=True)
    columns without their offset.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _each_day(start: date, end: date) -> List[date]:
    return [start + timedelta(days=offset) for offset in range((end - start).days + 1)]
