"""
Weekly performance metrics.

Everything here is a pure computation over one week's closed set of progress
rows: nothing is read from or written to the store, and the rows are never
mutated. The reset processor persists the result as a PerformanceSnapshot.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Iterable, Protocol

from models.progress import COMPLETED, SKIPPED

DAY_NAMES = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]

LOW_ENGAGEMENT_RATE = 50
HIGH_ENGAGEMENT_RATE = 80
CONSISTENCY_STRENGTH = 70
ADHERENCE_STRENGTH = 80
IMPROVEMENT_DELTA = 10
STREAK_STRENGTH = 3


class ProgressRecord(Protocol):
    status: str
    day_of_week: int
    points_earned: int
    execution_data: dict
    activity_snapshot: dict
    scheduled_date: object
    completed_at: object


@dataclass(frozen=True)
class PreviousWeek:
    completion_rate: int
    streak_weeks: int


@dataclass
class WeeklyMetrics:
    completion_rate: int
    streak_weeks: int
    engagement: dict
    performance: dict
    activity_type_analysis: dict
    daily_breakdown: dict
    insights: dict = field(default_factory=dict)


def _time_spent(row: ProgressRecord) -> int:
    value = (row.execution_data or {}).get("time_spent") or 0
    try:
        return max(0, int(value))
    except (TypeError, ValueError):
        return 0


def _same_day(a, b) -> bool:
    return a is not None and b is not None and a.date() == b.date()


def next_streak(completion_rate: int, previous: PreviousWeek | None, threshold: int) -> int:
    """Consecutive weeks at or above the threshold; any week below it resets the streak to 0."""
    if completion_rate < threshold:
        return 0
    return (previous.streak_weeks if previous else 0) + 1


def _daily_breakdown(rows: list[ProgressRecord]) -> dict:
    days = {d: {"total": 0, "completed": 0, "skipped": 0, "points_earned": 0, "time_spent": 0} for d in range(7)}
    for r in rows:
        day = days[int(r.day_of_week) % 7]
        day["total"] += 1
        if r.status == COMPLETED:
            day["completed"] += 1
            day["points_earned"] += int(r.points_earned or 0)
            day["time_spent"] += _time_spent(r)
        elif r.status == SKIPPED:
            day["skipped"] += 1
    return days


def _activity_type_analysis(rows: list[ProgressRecord]) -> dict:
    acc: dict[str, dict] = defaultdict(lambda: {"total": 0, "completed": 0, "skipped": 0, "points": 0, "time": 0})
    for r in rows:
        kind = str((r.activity_snapshot or {}).get("type", "unknown"))
        acc[kind]["total"] += 1
        if r.status == COMPLETED:
            acc[kind]["completed"] += 1
            acc[kind]["points"] += int(r.points_earned or 0)
            acc[kind]["time"] += _time_spent(r)
        elif r.status == SKIPPED:
            acc[kind]["skipped"] += 1

    return {
        kind: {
            "total": d["total"],
            "completed": d["completed"],
            "skipped": d["skipped"],
            "average_points": round(d["points"] / d["completed"], 1) if d["completed"] else 0.0,
            "average_time": round(d["time"] / d["completed"], 1) if d["completed"] else 0.0,
        }
        for kind, d in acc.items()
    }


def _best_and_worst_day(daily: dict) -> tuple[int | None, int | None]:
    rates = {d: v["completed"] / v["total"] for d, v in daily.items() if v["total"]}
    if not rates:
        return None, None
    best = max(rates, key=lambda d: (rates[d], -d))
    worst = min(rates, key=lambda d: (rates[d], d))
    return best, worst


def build_insights(
    completion_rate: int,
    consistency_score: int,
    adherence_score: int,
    improvement: int | None,
    streak_weeks: int,
    total: int,
    daily: dict,
    by_type: dict,
) -> dict:
    strengths: list[str] = []
    challenges: list[str] = []
    recommendations: list[str] = []

    if total == 0:
        challenges.append("No activities were scheduled this week.")
        return {"strengths": strengths, "challenges": challenges, "recommendations": recommendations}

    if completion_rate >= HIGH_ENGAGEMENT_RATE:
        strengths.append("Excellent engagement with the week's activities.")
    elif completion_rate < LOW_ENGAGEMENT_RATE:
        challenges.append("Low engagement: fewer than half of the week's activities were completed.")
        recommendations.append("Consider adjusting the difficulty or the number of activities.")

    if consistency_score >= CONSISTENCY_STRENGTH:
        strengths.append("Well-established routine across the active days.")
    else:
        challenges.append("Activity was concentrated on few days of the week.")
        recommendations.append("Setting a fixed time of day for activities may help.")

    if adherence_score >= ADHERENCE_STRENGTH:
        strengths.append("Activities were completed on their scheduled day.")

    if improvement is not None:
        if improvement >= IMPROVEMENT_DELTA:
            strengths.append(f"Completion rate improved by {improvement} points over the previous week.")
        elif improvement <= -IMPROVEMENT_DELTA:
            challenges.append(f"Completion rate dropped by {-improvement} points from the previous week.")
            recommendations.append("Check in with the student about what changed this week.")

    if streak_weeks >= STREAK_STRENGTH:
        strengths.append(f"{streak_weeks} consecutive weeks on target.")

    for day, v in sorted(daily.items()):
        if v["total"] >= 2 and v["completed"] == 0:
            challenges.append(f"Nothing was completed on {DAY_NAMES[day]}.")

    for kind, v in sorted(by_type.items()):
        if v["total"] >= 2 and v["skipped"] * 2 >= v["total"]:
            challenges.append(f"Most {kind} activities were skipped.")
            recommendations.append(f"Review whether {kind} activities fit the student's routine.")

    return {"strengths": strengths, "challenges": challenges, "recommendations": recommendations}


def compute_weekly_metrics(
    rows: Iterable[ProgressRecord],
    previous: PreviousWeek | None = None,
    streak_threshold: int = LOW_ENGAGEMENT_RATE,
) -> WeeklyMetrics:
    rows = list(rows)
    total = len(rows)
    completed = [r for r in rows if r.status == COMPLETED]
    skipped = sum(1 for r in rows if r.status == SKIPPED)

    completion_rate = int(round(len(completed) / total * 100)) if total else 0

    points = sum(int(r.points_earned or 0) for r in completed)
    time_total = sum(_time_spent(r) for r in completed)

    scheduled_days = {int(r.day_of_week) for r in rows}
    completed_days = {int(r.day_of_week) for r in completed}
    consistency = int(round(len(completed_days) / len(scheduled_days) * 100)) if scheduled_days else 0

    on_time = sum(1 for r in completed if _same_day(r.completed_at, r.scheduled_date))
    adherence = int(round(on_time / len(completed) * 100)) if completed else 0

    daily = _daily_breakdown(rows)
    by_type = _activity_type_analysis(rows)
    best, worst = _best_and_worst_day(daily)

    improvement = completion_rate - previous.completion_rate if previous else None
    streak = next_streak(completion_rate, previous, streak_threshold)

    return WeeklyMetrics(
        completion_rate=completion_rate,
        streak_weeks=streak,
        engagement={
            "completion_rate": completion_rate,
            "total_activities": total,
            "completed_activities": len(completed),
            "skipped_activities": skipped,
            "average_time_per_activity": round(time_total / len(completed), 1) if completed else 0.0,
            "consistency_score": consistency,
            "adherence_score": adherence,
        },
        performance={
            "total_points_earned": points,
            "average_points_per_activity": round(points / len(completed), 1) if completed else 0.0,
            "best_performing_day": best,
            "worst_performing_day": worst,
            "improvement_from_previous_week": improvement,
        },
        activity_type_analysis=by_type,
        daily_breakdown={str(d): v for d, v in daily.items()},
        insights=build_insights(completion_rate, consistency, adherence, improvement, streak, total, daily, by_type),
    )
