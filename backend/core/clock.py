from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from core.config import settings


def utcnow() -> datetime:
    # Naive UTC; that is what the DateTime columns store.
    return datetime.now(timezone.utc).replace(tzinfo=None)


def local_today(now: datetime | None = None, tz: str | None = None) -> date:
    now = now or utcnow()
    aware = now.replace(tzinfo=timezone.utc) if now.tzinfo is None else now
    return aware.astimezone(ZoneInfo(tz or settings.timezone)).date()


def week_bounds(day: date) -> tuple[datetime, datetime]:
    """Monday 00:00 to Sunday 23:59:59.999999 of the week containing `day`."""
    monday = day - timedelta(days=day.weekday())
    start = datetime.combine(monday, time.min)
    end = datetime.combine(monday + timedelta(days=6), time.max)
    return start, end


def scheduled_date_for(week_start: datetime, day_of_week: int) -> datetime:
    # day_of_week is 0 = Sunday .. 6 = Saturday; weeks start on Monday.
    return week_start + timedelta(days=(day_of_week - 1) % 7)


def local_now(now: datetime | None = None, tz: str | None = None) -> datetime:
    """Wall-clock time in the configured timezone, naive, comparable with stored week bounds."""
    now = now or utcnow()
    aware = now.replace(tzinfo=timezone.utc) if now.tzinfo is None else now
    return aware.astimezone(ZoneInfo(tz or settings.timezone)).replace(tzinfo=None)


def utc_naive(now: datetime | None = None) -> datetime:
    """`now` (or the current time) as naive UTC, the form timestamps are stored in."""
    now = now or utcnow()
    return now.astimezone(timezone.utc).replace(tzinfo=None) if now.tzinfo else now
