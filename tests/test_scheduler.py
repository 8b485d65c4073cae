import threading
from datetime import datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from core.errors import ValidationError
from services.scheduler import CronSchedule, WeeklyResetScheduler

SP = ZoneInfo("America/Sao_Paulo")


def test_weekly_reset_fires_monday_after_midnight_local():
    cron = CronSchedule.parse("1 0 * * 1")

    # Wednesday noon in Sao Paulo.
    due = cron.next_run(datetime(2024, 6, 5, 15, 0), "America/Sao_Paulo")

    assert due == datetime(2024, 6, 10, 0, 1, tzinfo=SP)
    assert due.astimezone(timezone.utc).replace(tzinfo=None) == datetime(2024, 6, 10, 3, 1)


def test_next_run_is_strictly_after_the_current_tick():
    cron = CronSchedule.parse("1 0 * * 1")

    due = cron.next_run(datetime(2024, 6, 10, 0, 1, tzinfo=SP), "America/Sao_Paulo")

    assert due == datetime(2024, 6, 17, 0, 1, tzinfo=SP)


def test_steps_lists_and_ranges():
    assert CronSchedule.parse("*/15 * * * *").next_run(datetime(2024, 6, 5, 10, 7, tzinfo=SP), "America/Sao_Paulo") == datetime(
        2024, 6, 5, 10, 15, tzinfo=SP
    )
    cron = CronSchedule.parse("30 8,18 * * 1-5")
    # Saturday morning rolls to Monday 08:30.
    assert cron.next_run(datetime(2024, 6, 8, 9, 0, tzinfo=SP), "America/Sao_Paulo") == datetime(2024, 6, 10, 8, 30, tzinfo=SP)
    # 7 is Sunday as well.
    assert CronSchedule.parse("0 0 * * 7").weekdays == frozenset({0})


@pytest.mark.parametrize("expr", ["1 0 * *", "61 0 * * 1", "a 0 * * 1", "*/0 * * * *", "5-1 * * * *"])
def test_invalid_expressions_are_rejected(expr):
    with pytest.raises(ValidationError):
        CronSchedule.parse(expr)


def test_scheduler_thread_runs_job_and_stops():
    ran = threading.Event()
    # 0.1s before 00:00 local on a Monday.
    just_before = datetime(2024, 6, 10, 2, 59, 59, 900000, tzinfo=timezone.utc)

    scheduler = WeeklyResetScheduler(ran.set, cron="* * * * *", tz="America/Sao_Paulo", clock=lambda: just_before)
    scheduler.start()
    try:
        assert ran.wait(2)
    finally:
        scheduler.stop()

    assert not scheduler.is_alive()


def test_scheduler_survives_job_failure():
    calls = []
    done = threading.Event()
    just_before = datetime(2024, 6, 10, 2, 59, 59, 950000, tzinfo=timezone.utc)

    def job():
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("boom")
        done.set()

    scheduler = WeeklyResetScheduler(job, cron="* * * * *", tz="America/Sao_Paulo", clock=lambda: just_before)
    scheduler.start()
    try:
        assert done.wait(2)
    finally:
        scheduler.stop()

    assert len(calls) >= 2
