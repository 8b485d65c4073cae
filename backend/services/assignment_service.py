from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy.orm import Session

from core.context import ActorContext
from core.errors import NotFoundError, PermissionDenied, StateConflictError, classify_store_error
from core.logging import log_event
from models.user import User
from schemas.assignment import AssignmentFailure, AssignmentResult, AssignmentSuccess
from services.instance_service import (
    generate_week_progress,
    has_open_instance,
    is_assigned_student,
    new_instance,
    recompute_progress_cache,
)
from services.template_service import get_template, latest_version

logger = logging.getLogger(__name__)


def _assign_one(db: Session, template, student_id: str, actor: ActorContext, now: datetime | None) -> AssignmentSuccess:
    student = db.get(User, student_id)
    if not student or student.role != "student":
        raise NotFoundError(f"Student {student_id} not found.")

    if not actor.is_coordinator and not is_assigned_student(db, actor.actor_id, student_id):
        raise PermissionDenied("Student is not on this professional's list.")

    if has_open_instance(db, student_id, template.lineage_id):
        raise StateConflictError("Student already has an active instance of this schedule.")

    instance = new_instance(template, student_id=student_id, professional_id=actor.actor_id, now=now)
    db.add(instance)
    db.flush()
    rows = generate_week_progress(db, instance, 1)
    recompute_progress_cache(db, instance)
    db.commit()
    return AssignmentSuccess(student_id=student_id, instance_id=str(instance.id), activities_created=len(rows))


def assign_to_students(
    db: Session,
    template_id: str,
    student_ids: list[str],
    actor: ActorContext,
    now: datetime | None = None,
) -> AssignmentResult:
    """
    Attach the latest version of a template to each student.

    Whole-call preconditions (template exists, is active, actor may assign it)
    raise. Everything per student is collected into `failed` so one student
    never affects another.
    """
    if not actor.is_professional:
        raise PermissionDenied("Professional access required.")

    template = latest_version(db, get_template(db, template_id).lineage_id)
    if not template.is_active:
        raise StateConflictError(f"Template {template.id} is archived.")
    if not actor.is_coordinator and template.owner_id != actor.actor_id:
        raise PermissionDenied("No permission to assign this schedule.")

    result = AssignmentResult(template_id=str(template.id))
    for student_id in dict.fromkeys(student_ids):
        try:
            result.successful.append(_assign_one(db, template, student_id, actor, now))
        except Exception as exc:
            db.rollback()
            err = classify_store_error(exc)
            if err is None:
                logger.exception("Unexpected error assigning template %s to %s", template_id, student_id)
                reason, kind = str(exc) or exc.__class__.__name__, "internal"
            else:
                reason, kind = err.message, err.kind
            result.failed.append(AssignmentFailure(student_id=student_id, reason=reason, error_type=kind))
            log_event(
                logger,
                "assignment.student.failed",
                level=logging.WARNING,
                template_id=template.id,
                student_id=student_id,
                error_type=kind,
                reason=reason,
            )

    log_event(
        logger,
        "assignment.finished",
        template_id=template.id,
        actor_id=actor.actor_id,
        successful=len(result.successful),
        failed=len(result.failed),
    )
    return result

