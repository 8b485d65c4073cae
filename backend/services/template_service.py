"""
Template store and activity catalog.

Templates are versioned: `update_template` never edits a row, it forks a new
version in the same lineage and leaves the old one resolvable for the
instances that still point at it.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date

from sqlalchemy import func
from sqlalchemy.orm import Session

from core.context import ActorContext
from core.errors import NotFoundError, PermissionDenied, StateConflictError, ValidationError
from core.logging import log_event
from models.template import ScheduleActivity, ScheduleTemplate
from schemas.activity import ActivityBase, parse_activity
from schemas.template import (
    ActivityResponse,
    TemplateCreate,
    TemplateDetailResponse,
    TemplateResponse,
    TemplateUpdate,
)

logger = logging.getLogger(__name__)


def validate_template_data(
    name: str,
    active_days: list[int],
    start_date: date,
    end_date: date,
    activities: list[ActivityBase],
) -> None:
    errors: list[str] = []

    if not name or len(name.strip()) < 3:
        errors.append("Template name must have at least 3 characters.")
    if end_date <= start_date:
        errors.append("end_date must be after start_date.")
    if not active_days:
        errors.append("Select at least one active day.")
    if any(d < 0 or d > 6 for d in active_days):
        errors.append("Active days must be between 0 (Sunday) and 6 (Saturday).")
    if not activities:
        errors.append("Add at least one activity.")

    days = set(active_days)
    seen: set[tuple[int, int]] = set()
    for i, a in enumerate(activities, start=1):
        if a.day_of_week not in days:
            errors.append(f"Activity {i}: day {a.day_of_week} is not an active day of the template.")
        key = (a.day_of_week, a.order_index)
        if key in seen:
            errors.append(f"Activity {i}: order_index {a.order_index} is already used on day {a.day_of_week}.")
        seen.add(key)
        if a.scoring.points_on_completion < 0:
            errors.append(f"Activity {i}: points cannot be negative.")
        if a.metadata.estimated_duration <= 0:
            errors.append(f"Activity {i}: estimated duration must be positive.")

    if errors:
        raise ValidationError("Invalid template data.", details=errors)


def _require_author(actor: ActorContext) -> None:
    if not actor.is_professional:
        raise PermissionDenied("Professional access required.")


def _require_owner(template: ScheduleTemplate, actor: ActorContext) -> None:
    if template.owner_id != actor.actor_id:
        raise PermissionDenied("Only the template owner can change this template.")


def _new_activity(template_id: str, a: ActivityBase) -> ScheduleActivity:
    data = a.model_dump(mode="json")
    return ScheduleActivity(
        template_id=template_id,
        day_of_week=a.day_of_week,
        order_index=a.order_index,
        type=data["type"],
        title=a.title.strip(),
        description=(a.description or "").strip() or None,
        instructions=a.instructions.strip(),
        config=data["config"],
        scoring=data["scoring"],
        details=data["metadata"],
    )


def activity_payload(activity: ScheduleActivity) -> dict:
    """Catalog row as the dict shape `schemas.activity.parse_activity` accepts."""
    return {
        "day_of_week": activity.day_of_week,
        "order_index": activity.order_index,
        "type": activity.type,
        "title": activity.title,
        "description": activity.description,
        "instructions": activity.instructions,
        "config": dict(activity.config or {}),
        "scoring": dict(activity.scoring or {}),
        "metadata": dict(activity.details or {}),
    }


def activity_snapshot(activity: ScheduleActivity) -> dict:
    # Frozen copy embedded in activity_progress rows.
    return {
        "id": activity.id,
        "template_id": activity.template_id,
        **activity_payload(activity),
    }


def get_template(db: Session, template_id: str) -> ScheduleTemplate:
    template = db.get(ScheduleTemplate, template_id)
    if not template:
        raise NotFoundError(f"Template {template_id} not found.")
    return template


def get_visible_template(db: Session, template_id: str, actor: ActorContext) -> ScheduleTemplate:
    template = get_template(db, template_id)
    if not (actor.is_coordinator or template.owner_id == actor.actor_id):
        raise PermissionDenied("No access to this template.")
    return template


def latest_version(db: Session, lineage_id: str) -> ScheduleTemplate:
    template = (
        db.query(ScheduleTemplate)
        .filter(ScheduleTemplate.lineage_id == lineage_id)
        .order_by(ScheduleTemplate.version.desc())
        .first()
    )
    if not template:
        raise NotFoundError(f"Template lineage {lineage_id} not found.")
    return template


def list_activities(db: Session, template_id: str) -> list[ScheduleActivity]:
    return (
        db.query(ScheduleActivity)
        .filter(ScheduleActivity.template_id == template_id)
        .order_by(ScheduleActivity.day_of_week.asc(), ScheduleActivity.order_index.asc())
        .all()
    )


def list_active_day_activities(db: Session, template: ScheduleTemplate) -> list[ScheduleActivity]:
    days = set(template.active_days or [])
    return [a for a in list_activities(db, template.id) if a.day_of_week in days]


def list_template_versions(db: Session, template_id: str) -> list[ScheduleTemplate]:
    template = get_template(db, template_id)
    return (
        db.query(ScheduleTemplate)
        .filter(ScheduleTemplate.lineage_id == template.lineage_id)
        .order_by(ScheduleTemplate.version.asc())
        .all()
    )


def list_owner_templates(db: Session, owner_id: str, include_archived: bool = False) -> list[ScheduleTemplate]:
    latest = (
        db.query(ScheduleTemplate.lineage_id, func.max(ScheduleTemplate.version).label("version"))
        .filter(ScheduleTemplate.owner_id == owner_id)
        .group_by(ScheduleTemplate.lineage_id)
        .subquery()
    )
    q = db.query(ScheduleTemplate).join(
        latest,
        (ScheduleTemplate.lineage_id == latest.c.lineage_id) & (ScheduleTemplate.version == latest.c.version),
    )
    if not include_archived:
        q = q.filter(ScheduleTemplate.is_active.is_(True))
    return q.order_by(ScheduleTemplate.created_at.desc()).all()


def create_template(db: Session, actor: ActorContext, data: TemplateCreate) -> ScheduleTemplate:
    _require_author(actor)
    validate_template_data(data.name, data.active_days, data.start_date, data.end_date, data.activities)

    template_id = str(uuid.uuid4())
    template = ScheduleTemplate(
        id=template_id,
        lineage_id=template_id,
        version=1,
        owner_id=actor.actor_id,
        name=data.name.strip(),
        description=(data.description or "").strip() or None,
        category=data.category,
        active_days=sorted(set(data.active_days)),
        repeat_rules=data.repeat_rules.model_dump(),
        tags=list(data.tags),
        start_date=data.start_date,
        end_date=data.end_date,
        is_active=True,
    )
    db.add(template)
    db.add_all([_new_activity(template_id, a) for a in data.activities])
    db.commit()
    db.refresh(template)

    log_event(logger, "template.created", template_id=template.id, owner_id=actor.actor_id, activities=len(data.activities))
    return template


def update_template(db: Session, existing_id: str, actor: ActorContext, changes: TemplateUpdate) -> ScheduleTemplate:
    current = get_template(db, existing_id)
    _require_owner(current, actor)
    if current.superseded_by_id:
        raise StateConflictError(
            f"Template {existing_id} was already superseded by {current.superseded_by_id}; edit the latest version."
        )

    patch = changes.model_dump(exclude_unset=True, exclude={"activities"})
    name = patch.get("name", current.name)
    active_days = patch.get("active_days", current.active_days)
    start_date = patch.get("start_date", current.start_date)
    end_date = patch.get("end_date", current.end_date)

    if changes.activities is not None:
        activities = list(changes.activities)
    else:
        activities = [parse_activity(activity_payload(a)) for a in list_activities(db, current.id)]

    validate_template_data(name, active_days, start_date, end_date, activities)

    new_id = str(uuid.uuid4())
    forked = ScheduleTemplate(
        id=new_id,
        lineage_id=current.lineage_id,
        version=latest_version(db, current.lineage_id).version + 1,
        owner_id=current.owner_id,
        name=name.strip(),
        description=patch.get("description", current.description),
        category=patch.get("category", current.category),
        active_days=sorted(set(active_days)),
        repeat_rules=patch.get("repeat_rules", current.repeat_rules),
        tags=patch.get("tags", current.tags),
        start_date=start_date,
        end_date=end_date,
        is_active=current.is_active,
    )
    db.add(forked)
    db.add_all([_new_activity(new_id, a) for a in activities])
    current.superseded_by_id = new_id
    db.add(current)
    db.commit()
    db.refresh(forked)

    log_event(
        logger,
        "template.forked",
        template_id=current.id,
        new_template_id=new_id,
        version=forked.version,
        owner_id=actor.actor_id,
    )
    return forked


def archive_template(db: Session, template_id: str, actor: ActorContext) -> ScheduleTemplate:
    template = get_template(db, template_id)
    _require_owner(template, actor)
    template.is_active = False
    db.add(template)
    db.commit()
    db.refresh(template)
    log_event(logger, "template.archived", template_id=template.id, owner_id=actor.actor_id)
    return template


def to_activity_response(a: ScheduleActivity) -> ActivityResponse:
    return ActivityResponse(
        id=str(a.id),
        template_id=str(a.template_id),
        day_of_week=int(a.day_of_week),
        order_index=int(a.order_index),
        type=a.type,
        title=a.title,
        description=a.description,
        instructions=a.instructions or "",
        config=dict(a.config or {}),
        scoring=dict(a.scoring or {}),
        metadata=dict(a.details or {}),
    )


def to_response(db: Session, t: ScheduleTemplate) -> TemplateResponse:
    count = db.query(ScheduleActivity).filter(ScheduleActivity.template_id == t.id).count()
    return TemplateResponse(
        id=str(t.id),
        lineage_id=str(t.lineage_id),
        version=int(t.version),
        owner_id=str(t.owner_id),
        name=t.name,
        description=t.description,
        category=t.category,
        active_days=list(t.active_days or []),
        repeat_rules=dict(t.repeat_rules or {}),
        tags=list(t.tags or []),
        start_date=t.start_date,
        end_date=t.end_date,
        is_active=bool(t.is_active),
        superseded_by_id=t.superseded_by_id,
        created_at=t.created_at,
        activity_count=int(count),
    )


def to_detail_response(db: Session, t: ScheduleTemplate) -> TemplateDetailResponse:
    return TemplateDetailResponse(
        **to_response(db, t).model_dump(),
        activities=[to_activity_response(a) for a in list_activities(db, t.id)],
    )
