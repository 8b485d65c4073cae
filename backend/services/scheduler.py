"""
In-process trigger for the weekly reset.

Cron expressions use the usual five fields (minute hour day-of-month month
day-of-week, 0 = Sunday) with `*`, lists, ranges and `*/step`. Times are
evaluated in the configured timezone. Deployments that prefer an external cron
run `scripts/run_weekly_reset.py` instead and set RESET_SCHEDULER_ENABLED=false.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone
from typing import Callable
from zoneinfo import ZoneInfo

from core.config import settings
from core.errors import ValidationError

logger = logging.getLogger(__name__)

_FIELDS = [("minute", 0, 59), ("hour", 0, 23), ("day", 1, 31), ("month", 1, 12), ("weekday", 0, 7)]


def _parse_field(text: str, name: str, lo: int, hi: int) -> frozenset[int]:
    values: set[int] = set()
    for part in text.split(","):
        step = 1
        if "/" in part:
            part, step_s = part.split("/", 1)
            if not step_s.isdigit() or int(step_s) == 0:
                raise ValidationError(f"Invalid step in cron {name} field: {text!r}")
            step = int(step_s)
        if part == "*":
            start, end = lo, hi
        elif "-" in part:
            a, b = part.split("-", 1)
            if not (a.isdigit() and b.isdigit()):
                raise ValidationError(f"Invalid range in cron {name} field: {text!r}")
            start, end = int(a), int(b)
        elif part.isdigit():
            start = end = int(part)
        else:
            raise ValidationError(f"Invalid cron {name} field: {text!r}")
        if start < lo or end > hi or start > end:
            raise ValidationError(f"Cron {name} field out of range {lo}-{hi}: {text!r}")
        values.update(range(start, end + 1, step))
    return frozenset(values)


@dataclass(frozen=True)
class CronSchedule:
    minutes: frozenset[int]
    hours: frozenset[int]
    days: frozenset[int]
    months: frozenset[int]
    weekdays: frozenset[int]
    day_restricted: bool
    weekday_restricted: bool

    @classmethod
    def parse(cls, expr: str) -> "CronSchedule":
        parts = expr.split()
        if len(parts) != 5:
            raise ValidationError(f"Cron expression needs 5 fields, got {len(parts)}: {expr!r}")
        minutes, hours, days, months, weekdays = (
            _parse_field(p, name, lo, hi) for p, (name, lo, hi) in zip(parts, _FIELDS)
        )
        return cls(
            minutes=minutes,
            hours=hours,
            days=days,
            months=months,
            weekdays=frozenset(d % 7 for d in weekdays),  # 7 is also Sunday
            day_restricted=parts[2] != "*",
            weekday_restricted=parts[4] != "*",
        )

    def matches_day(self, day) -> bool:
        if day.month not in self.months:
            return False
        dom = day.day in self.days
        dow = (day.weekday() + 1) % 7 in self.weekdays
        # Standard cron: when both are restricted either one may match.
        if self.day_restricted and self.weekday_restricted:
            return dom or dow
        return dom and dow

    def next_run(self, after: datetime, tz: str | None = None) -> datetime:
        """First matching minute strictly after `after`, returned as an aware datetime in `tz`."""
        zone = ZoneInfo(tz or settings.timezone)
        if after.tzinfo is None:
            after = after.replace(tzinfo=timezone.utc)
        local = after.astimezone(zone).replace(tzinfo=None, second=0, microsecond=0)
        floor = local + timedelta(minutes=1)

        day = floor.date()
        for _ in range(366 * 5):
            if self.matches_day(day):
                for hour in sorted(self.hours):
                    for minute in sorted(self.minutes):
                        candidate = datetime.combine(day, time(hour, minute))
                        if candidate >= floor:
                            return candidate.replace(tzinfo=zone)
            day += timedelta(days=1)
        raise ValidationError("Cron expression never fires.")


class WeeklyResetScheduler(threading.Thread):
    """Sleeps until the next cron tick, runs the job, repeats until stopped."""

    def __init__(
        self,
        job: Callable[[], object],
        cron: str | None = None,
        tz: str | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        super().__init__(name="weekly-reset-scheduler", daemon=True)
        self.job = job
        self.schedule = CronSchedule.parse(cron or settings.reset_cron)
        self.tz = tz or settings.timezone
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self._stop_event = threading.Event()

    def next_run(self) -> datetime:
        return self.schedule.next_run(self.clock(), self.tz)

    def run(self) -> None:
        while not self._stop_event.is_set():
            due = self.next_run()
            wait = max(0.0, (due - self.clock()).total_seconds())
            logger.info("Next weekly reset at %s", due.isoformat())
            if self._stop_event.wait(wait):
                break
            try:
                self.job()
            except Exception:
                logger.exception("Scheduled weekly reset failed")

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop_event.set()
        if self.is_alive():
            self.join(timeout)
