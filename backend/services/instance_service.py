from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import desc
from sqlalchemy.orm import Session

from core.clock import local_today, scheduled_date_for, utcnow, week_bounds
from core.context import ActorContext
from core.errors import NotFoundError, PermissionDenied, StateConflictError
from core.logging import log_event
from models.instance import OPEN_STATUSES, ScheduleInstance, empty_progress_cache
from models.progress import COMPLETED, ActivityProgress
from models.snapshot import PerformanceSnapshot
from models.template import ScheduleTemplate
from models.user import ProfessionalStudent
from schemas.instance import InstanceResponse, ProgressCache, SnapshotResponse
from schemas.progress import ProgressItem
from services.template_service import activity_snapshot, get_template, list_active_day_activities

logger = logging.getLogger(__name__)


def new_instance(
    template: ScheduleTemplate, student_id: str, professional_id: str, now: datetime | None = None
) -> ScheduleInstance:
    now = now or utcnow()
    week_start, week_end = week_bounds(local_today(now))
    return ScheduleInstance(
        template_id=template.id,
        template_lineage_id=template.lineage_id,
        template_version=template.version,
        student_id=student_id,
        professional_id=professional_id,
        status="active",
        current_week_number=1,
        current_week_start_date=week_start,
        current_week_end_date=week_end,
        started_at=now,
        progress_cache=empty_progress_cache(),
    )


def has_open_instance(db: Session, student_id: str, lineage_id: str) -> bool:
    return (
        db.query(ScheduleInstance.id)
        .filter(
            ScheduleInstance.student_id == student_id,
            ScheduleInstance.template_lineage_id == lineage_id,
            ScheduleInstance.status.in_(OPEN_STATUSES),
        )
        .first()
        is not None
    )


def week_has_rows(db: Session, instance_id: str, week_number: int) -> bool:
    return (
        db.query(ActivityProgress.id)
        .filter(ActivityProgress.schedule_instance_id == instance_id, ActivityProgress.week_number == week_number)
        .first()
        is not None
    )


def generate_week_progress(
    db: Session, instance: ScheduleInstance, week_number: int, week_start: datetime | None = None
) -> list[ActivityProgress]:
    """
    Create the progress rows for one week from the instance's own template version.

    Returns [] without writing when the week already has rows. Rows are only
    added to the session; the caller owns the transaction.
    """
    db.flush()
    if week_has_rows(db, instance.id, week_number):
        return []

    template = get_template(db, instance.template_id)
    week_start = week_start or instance.current_week_start_date

    rows = [
        ActivityProgress(
            schedule_instance_id=instance.id,
            activity_id=a.id,
            student_id=instance.student_id,
            week_number=week_number,
            day_of_week=a.day_of_week,
            scheduled_date=scheduled_date_for(week_start, a.day_of_week),
            activity_snapshot=activity_snapshot(a),
            status="pending",
            execution_data={},
            points_earned=0,
        )
        for a in list_active_day_activities(db, template)
    ]
    db.add_all(rows)
    return rows


def get_week_rows(db: Session, instance_id: str, week_number: int) -> list[ActivityProgress]:
    return (
        db.query(ActivityProgress)
        .filter(ActivityProgress.schedule_instance_id == instance_id, ActivityProgress.week_number == week_number)
        .order_by(ActivityProgress.scheduled_date.asc(), ActivityProgress.day_of_week.asc())
        .all()
    )


def latest_snapshot(db: Session, instance_id: str) -> PerformanceSnapshot | None:
    return (
        db.query(PerformanceSnapshot)
        .filter(PerformanceSnapshot.schedule_instance_id == instance_id, PerformanceSnapshot.is_active.is_(True))
        .order_by(desc(PerformanceSnapshot.week_number))
        .first()
    )


def recompute_progress_cache(db: Session, instance: ScheduleInstance) -> dict:
    """Rebuild the weekly cache from the current week's rows; streak comes from the latest snapshot."""
    db.flush()
    rows = get_week_rows(db, instance.id, instance.current_week_number)
    completed = [r for r in rows if r.status == COMPLETED]
    total = len(rows)
    last = latest_snapshot(db, instance.id)

    cache = {
        "completed_activities": len(completed),
        "total_activities": total,
        "completion_percentage": int(round(len(completed) / total * 100)) if total else 0,
        "points_earned": sum(int(r.points_earned or 0) for r in completed),
        "streak_weeks": int(last.streak_weeks) if last else 0,
        "last_updated_at": utcnow().isoformat(),
    }
    instance.progress_cache = cache
    db.add(instance)
    return cache


def get_instance(db: Session, instance_id: str) -> ScheduleInstance:
    instance = db.get(ScheduleInstance, instance_id)
    if not instance:
        raise NotFoundError(f"Schedule instance {instance_id} not found.")
    return instance


def is_assigned_student(db: Session, professional_id: str, student_id: str) -> bool:
    return (
        db.query(ProfessionalStudent.id)
        .filter(ProfessionalStudent.professional_id == professional_id, ProfessionalStudent.student_id == student_id)
        .first()
        is not None
    )


def ensure_can_view(db: Session, instance: ScheduleInstance, actor: ActorContext) -> None:
    if actor.is_coordinator or actor.actor_id in (instance.student_id, instance.professional_id):
        return
    if actor.is_professional and is_assigned_student(db, actor.actor_id, instance.student_id):
        return
    raise PermissionDenied("No access to this schedule instance.")


def ensure_can_manage(instance: ScheduleInstance, actor: ActorContext) -> None:
    if actor.is_coordinator or (actor.is_professional and actor.actor_id == instance.professional_id):
        return
    raise PermissionDenied("Only the assigning professional or a coordinator can manage this instance.")


def list_student_instances(db: Session, student_id: str, include_completed: bool = False) -> list[ScheduleInstance]:
    q = db.query(ScheduleInstance).filter(ScheduleInstance.student_id == student_id)
    if not include_completed:
        q = q.filter(ScheduleInstance.status.in_(OPEN_STATUSES))
    return q.order_by(desc(ScheduleInstance.started_at)).all()


def list_visible_instances(
    db: Session, actor: ActorContext, student_id: str | None = None, include_completed: bool = False
) -> list[ScheduleInstance]:
    if actor.is_student:
        return list_student_instances(db, actor.actor_id, include_completed=include_completed)

    q = db.query(ScheduleInstance)
    if student_id:
        q = q.filter(ScheduleInstance.student_id == student_id)
    if not actor.is_coordinator:
        q = q.filter(ScheduleInstance.professional_id == actor.actor_id)
    if not include_completed:
        q = q.filter(ScheduleInstance.status.in_(OPEN_STATUSES))
    return q.order_by(desc(ScheduleInstance.started_at)).limit(500).all()


def get_week_progress(db: Session, instance_id: str, week_number: int, actor: ActorContext) -> list[ActivityProgress]:
    instance = get_instance(db, instance_id)
    ensure_can_view(db, instance, actor)
    return get_week_rows(db, instance.id, week_number)


def get_today_activities(db: Session, actor: ActorContext, now: datetime | None = None) -> list[ActivityProgress]:
    today = local_today(now)
    rows: list[ActivityProgress] = []
    for instance in list_student_instances(db, actor.actor_id):
        if instance.status != "active":
            continue
        rows.extend(
            r for r in get_week_rows(db, instance.id, instance.current_week_number) if r.scheduled_date.date() == today
        )
    return rows


def _set_status(db: Session, instance: ScheduleInstance, from_status: str, to_status: str, actor: ActorContext) -> ScheduleInstance:
    ensure_can_manage(instance, actor)
    if instance.status != from_status:
        raise StateConflictError(f"Instance is {instance.status}; expected {from_status}.")
    instance.status = to_status
    db.add(instance)
    db.commit()
    db.refresh(instance)
    log_event(logger, "instance.status_changed", instance_id=instance.id, status=to_status, actor_id=actor.actor_id)
    return instance


def pause_instance(db: Session, instance_id: str, actor: ActorContext) -> ScheduleInstance:
    return _set_status(db, get_instance(db, instance_id), "active", "paused", actor)


def resume_instance(db: Session, instance_id: str, actor: ActorContext) -> ScheduleInstance:
    return _set_status(db, get_instance(db, instance_id), "paused", "active", actor)


def list_snapshots(db: Session, instance_id: str, actor: ActorContext) -> list[PerformanceSnapshot]:
    instance = get_instance(db, instance_id)
    ensure_can_view(db, instance, actor)
    return (
        db.query(PerformanceSnapshot)
        .filter(PerformanceSnapshot.schedule_instance_id == instance.id, PerformanceSnapshot.is_active.is_(True))
        .order_by(desc(PerformanceSnapshot.week_number))
        .all()
    )


def to_response(i: ScheduleInstance) -> InstanceResponse:
    return InstanceResponse(
        id=str(i.id),
        template_id=str(i.template_id),
        template_lineage_id=str(i.template_lineage_id),
        template_version=int(i.template_version),
        student_id=str(i.student_id),
        professional_id=str(i.professional_id),
        status=i.status,
        current_week_number=int(i.current_week_number),
        current_week_start_date=i.current_week_start_date,
        current_week_end_date=i.current_week_end_date,
        started_at=i.started_at,
        completed_at=i.completed_at,
        progress_cache=ProgressCache(**(i.progress_cache or {})),
        lifetime_completed=int(i.lifetime_completed or 0),
        lifetime_points=int(i.lifetime_points or 0),
    )


def to_progress_item(p: ActivityProgress) -> ProgressItem:
    snap = p.activity_snapshot or {}
    return ProgressItem(
        id=str(p.id),
        schedule_instance_id=str(p.schedule_instance_id),
        activity_id=str(p.activity_id),
        week_number=int(p.week_number),
        day_of_week=int(p.day_of_week),
        scheduled_date=p.scheduled_date,
        status=p.status,
        title=str(snap.get("title", "")),
        type=p.activity_type,
        points_earned=int(p.points_earned or 0),
        execution_data=dict(p.execution_data or {}),
        started_at=p.started_at,
        completed_at=p.completed_at,
    )


def to_snapshot_response(s: PerformanceSnapshot) -> SnapshotResponse:
    return SnapshotResponse(
        id=str(s.id),
        schedule_instance_id=str(s.schedule_instance_id),
        week_number=int(s.week_number),
        week_start_date=s.week_start_date,
        week_end_date=s.week_end_date,
        engagement=dict(s.engagement or {}),
        performance=dict(s.performance or {}),
        activity_type_analysis=dict(s.activity_type_analysis or {}),
        daily_breakdown=dict(s.daily_breakdown or {}),
        insights=dict(s.insights or {}),
        streak_weeks=int(s.streak_weeks or 0),
        generated_by=s.generated_by,
        created_at=s.created_at,
    )
