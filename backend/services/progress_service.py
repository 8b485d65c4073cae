"""
Activity progress state machine.

    pending -> in_progress -> completed
    pending | in_progress -> skipped

completed and skipped are terminal. Every transition checks the status it
expects on the row it loaded, and the row's `version` column makes a
concurrent writer fail with StaleDataError at flush. A stale write is retried
once from a fresh read, so the loser of a double `complete()` sees the new
status and gets StateConflictError instead of a second point award.
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import PurePath
from typing import Any, Callable, TypeVar

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from core.clock import utcnow
from core.context import ActorContext
from core.errors import NotFoundError, PermissionDenied, StateConflictError, ValidationError
from core.logging import log_event
from models.instance import ScheduleInstance
from models.progress import COMPLETED, IN_PROGRESS, PENDING, SKIPPED, TERMINAL_STATUSES, ActivityProgress
from models.user import User
from schemas.activity import (
    ActivityBase,
    AppConfig,
    ChecklistConfig,
    FileConfig,
    QuickConfig,
    QuizConfig,
    TextConfig,
    VideoConfig,
    parse_activity,
)
from schemas.progress import CompleteRequest
from services.instance_service import recompute_progress_cache

logger = logging.getLogger(__name__)

T = TypeVar("T")

MIN_TIME_SPENT = 1
MAX_TIME_SPENT = 240


def _load(db: Session, progress_id: str) -> ActivityProgress:
    row = db.get(ActivityProgress, progress_id)
    if not row:
        raise NotFoundError(f"Activity progress {progress_id} not found.")
    return row


def _ensure_owner(row: ActivityProgress, actor: ActorContext) -> None:
    if row.student_id != actor.actor_id:
        raise PermissionDenied("Only the assigned student can update this activity.")


def _with_stale_retry(db: Session, op: Callable[[], T]) -> T:
    try:
        return op()
    except StaleDataError:
        db.rollback()
    try:
        return op()
    except StaleDataError as exc:
        db.rollback()
        raise StateConflictError("Activity was changed concurrently; reload and try again.") from exc


def _activity(row: ActivityProgress) -> ActivityBase:
    return parse_activity(row.activity_snapshot or {})


# --- execution data validation ---------------------------------------------


def grade_quiz(config: QuizConfig, answers: dict[str, Any]) -> dict:
    def norm(value: Any) -> Any:
        if isinstance(value, (list, tuple, set)):
            return sorted(str(v).strip().lower() for v in value)
        return str(value).strip().lower()

    # All-zero weights count every question once.
    weights = {q.id: q.points for q in config.questions}
    if not any(weights.values()):
        weights = {q.id: 1 for q in config.questions}

    earned = 0
    correct = 0
    for q in config.questions:
        if q.id in answers and norm(answers[q.id]) == norm(q.correct_answer):
            correct += 1
            earned += weights[q.id]

    total = sum(weights.values())
    score = int(round(earned / total * 100)) if total else 0
    return {
        "score": score,
        "total_questions": len(config.questions),
        "correct_answers": correct,
        "passed": score >= config.passing_score,
    }


def _check_text(config: TextConfig, data: dict) -> list[str]:
    text = data.get("text")
    if not isinstance(text, str) or not text.strip():
        return ["A text response is required."]
    words = len(text.split())
    errors = []
    if words < config.min_words:
        errors.append(f"Response needs at least {config.min_words} words (got {words}).")
    if config.max_words is not None and words > config.max_words:
        errors.append(f"Response allows at most {config.max_words} words (got {words}).")
    return errors


def _check_checklist(config: ChecklistConfig, data: dict) -> list[str]:
    checked = set(data.get("checked_items") or [])
    missing = [item.label for item in config.items if item.required and item.id not in checked]
    return [f"Required items not checked: {', '.join(missing)}."] if missing else []


def _check_video(config: VideoConfig, data: dict) -> list[str]:
    try:
        watched = float(data.get("watched_percentage") or 0)
    except (TypeError, ValueError):
        return ["watched_percentage must be a number."]
    if watched < config.require_watch_percentage:
        return [f"Watch at least {config.require_watch_percentage}% of the video (watched {watched:g}%)."]
    return []


def _check_files(config: FileConfig, data: dict) -> list[str]:
    files = data.get("files") or []
    if not isinstance(files, list) or not files:
        return ["Upload at least one file."]

    errors = []
    if config.max_files is not None and len(files) > config.max_files:
        errors.append(f"At most {config.max_files} files are allowed.")
    allowed = {t.lower().lstrip(".") for t in config.allowed_types}
    for f in files:
        name = f.get("name", "") if isinstance(f, dict) else str(f)
        suffix = PurePath(name).suffix.lower().lstrip(".")
        if allowed and suffix not in allowed:
            errors.append(f"File type of {name!r} is not allowed.")
        size = f.get("size_mb") if isinstance(f, dict) else None
        if size is None:
            continue
        try:
            size = float(size)
        except (TypeError, ValueError):
            errors.append(f"size_mb of {name!r} must be a number.")
            continue
        if size > config.max_size_mb:
            errors.append(f"{name!r} is larger than {config.max_size_mb:g} MB.")
    return errors


def _check_quiz(config: QuizConfig, row: ActivityProgress, data: dict) -> list[str]:
    attempts = (row.execution_data or {}).get("quiz_attempts") or []
    if any(a.get("passed") for a in attempts):
        return []
    answers = data.get("answers")
    if isinstance(answers, dict) and grade_quiz(config, answers)["passed"]:
        return []
    return [f"A passing quiz attempt (score >= {config.passing_score}%) is required."]


def validate_execution(activity: ActivityBase, row: ActivityProgress, data: dict) -> None:
    config = activity.config
    if isinstance(config, (QuickConfig, AppConfig)):
        errors: list[str] = []
    elif isinstance(config, TextConfig):
        errors = _check_text(config, data)
    elif isinstance(config, ChecklistConfig):
        errors = _check_checklist(config, data)
    elif isinstance(config, VideoConfig):
        errors = _check_video(config, data)
    elif isinstance(config, FileConfig):
        errors = _check_files(config, data)
    elif isinstance(config, QuizConfig):
        errors = _check_quiz(config, row, data)
    else:
        raise ValidationError(f"Unsupported activity config {type(config).__name__}.")

    if errors:
        raise ValidationError("Invalid execution data.", details=errors)


def default_time_spent(started_at: datetime | None, now: datetime) -> int:
    if not started_at:
        return MIN_TIME_SPENT
    minutes = int((now - started_at).total_seconds() // 60)
    return max(MIN_TIME_SPENT, min(MAX_TIME_SPENT, minutes))


# --- transitions ------------------------------------------------------------


def start(db: Session, progress_id: str, actor: ActorContext, now: datetime | None = None) -> ActivityProgress:
    def op() -> ActivityProgress:
        row = _load(db, progress_id)
        _ensure_owner(row, actor)
        if row.status == IN_PROGRESS:
            return row
        if row.status != PENDING:
            raise StateConflictError(f"Cannot start an activity that is {row.status}.")
        row.status = IN_PROGRESS
        row.started_at = now or utcnow()
        db.add(row)
        db.commit()
        db.refresh(row)
        return row

    return _with_stale_retry(db, op)


def _award_points(db: Session, row: ActivityProgress, points: int) -> None:
    # Column expressions so concurrent awards to the same student add up.
    db.query(User).filter(User.id == row.student_id).update(
        {User.total_points: User.total_points + points}, synchronize_session=False
    )
    instance = db.get(ScheduleInstance, row.schedule_instance_id)
    instance.lifetime_completed = ScheduleInstance.lifetime_completed + 1
    instance.lifetime_points = ScheduleInstance.lifetime_points + points
    db.add(instance)
    db.flush()
    db.refresh(instance)
    recompute_progress_cache(db, instance)


def _complete_row(db: Session, row: ActivityProgress, activity: ActivityBase, data: dict, now: datetime) -> int:
    points = max(0, int(activity.scoring.points_on_completion))
    row.status = COMPLETED
    row.completed_at = now
    row.execution_data = data
    row.points_earned = points
    db.add(row)
    db.flush()
    _award_points(db, row, points)
    return points


def complete(
    db: Session,
    progress_id: str,
    actor: ActorContext,
    request: CompleteRequest | None = None,
    now: datetime | None = None,
) -> ActivityProgress:
    request = request or CompleteRequest()

    def op() -> ActivityProgress:
        row = _load(db, progress_id)
        _ensure_owner(row, actor)
        if row.status != IN_PROGRESS:
            raise StateConflictError(f"Cannot complete an activity that is {row.status}.")

        activity = _activity(row)
        validate_execution(activity, row, request.submission)

        ts = now or utcnow()
        data = {
            **(row.execution_data or {}),
            **request.submission,
            "time_spent": request.time_spent
            if request.time_spent is not None
            else default_time_spent(row.started_at, ts),
        }
        data.pop("draft", None)
        if request.notes:
            data["notes"] = request.notes
        if request.emotional_state:
            data["emotional_state"] = request.emotional_state.model_dump(exclude_none=True)

        points = _complete_row(db, row, activity, data, ts)
        db.commit()
        db.refresh(row)
        log_event(
            logger,
            "progress.completed",
            progress_id=row.id,
            instance_id=row.schedule_instance_id,
            student_id=row.student_id,
            points=points,
        )
        return row

    return _with_stale_retry(db, op)


def skip(
    db: Session, progress_id: str, actor: ActorContext, reason: str | None = None, now: datetime | None = None
) -> ActivityProgress:
    def op() -> ActivityProgress:
        row = _load(db, progress_id)
        _ensure_owner(row, actor)
        if row.status in TERMINAL_STATUSES:
            raise StateConflictError(f"Cannot skip an activity that is {row.status}.")
        row.status = SKIPPED
        row.points_earned = 0
        row.execution_data = {
            **(row.execution_data or {}),
            "skip_reason": reason,
            "skipped_at": (now or utcnow()).isoformat(),
        }
        db.add(row)
        db.commit()
        db.refresh(row)
        log_event(logger, "progress.skipped", progress_id=row.id, instance_id=row.schedule_instance_id)
        return row

    return _with_stale_retry(db, op)


def save_draft(
    db: Session, progress_id: str, actor: ActorContext, partial: dict, now: datetime | None = None
) -> ActivityProgress:
    def op() -> ActivityProgress:
        row = _load(db, progress_id)
        _ensure_owner(row, actor)
        if row.status in TERMINAL_STATUSES:
            raise StateConflictError(f"Cannot save a draft for an activity that is {row.status}.")
        current = dict(row.execution_data or {})
        current["draft"] = {**(current.get("draft") or {}), **partial}
        current["last_saved_at"] = (now or utcnow()).isoformat()
        row.execution_data = current
        db.add(row)
        db.commit()
        db.refresh(row)
        return row

    return _with_stale_retry(db, op)


def submit_quiz(
    db: Session, progress_id: str, actor: ActorContext, answers: dict[str, Any], now: datetime | None = None
) -> tuple[ActivityProgress, dict]:
    """Grade one attempt; a passing attempt completes the row and awards its points."""

    def op() -> tuple[ActivityProgress, dict]:
        row = _load(db, progress_id)
        _ensure_owner(row, actor)
        activity = _activity(row)
        if not isinstance(activity.config, QuizConfig):
            raise ValidationError("This activity is not a quiz.")
        if row.status != IN_PROGRESS:
            raise StateConflictError(f"Cannot submit a quiz for an activity that is {row.status}.")

        data = dict(row.execution_data or {})
        attempts = list(data.get("quiz_attempts") or [])
        max_attempts = activity.config.max_attempts
        if max_attempts is not None and len(attempts) >= max_attempts:
            raise StateConflictError(f"No attempts left ({max_attempts} allowed).")

        ts = now or utcnow()
        result = grade_quiz(activity.config, answers)
        result["attempt_number"] = len(attempts) + 1
        attempts.append({**result, "answers": answers, "submitted_at": ts.isoformat()})
        data["quiz_attempts"] = attempts

        if result["passed"]:
            data["score"] = result["score"]
            data["time_spent"] = default_time_spent(row.started_at, ts)
            _complete_row(db, row, activity, data, ts)
        else:
            row.execution_data = data
            db.add(row)

        db.commit()
        db.refresh(row)
        log_event(
            logger,
            "progress.quiz_submitted",
            progress_id=row.id,
            attempt=result["attempt_number"],
            score=result["score"],
            passed=result["passed"],
        )
        return row, result

    return _with_stale_retry(db, op)
