"""
Weekly rollover.

For every due instance (open, and its current week has ended): write the
closing week's PerformanceSnapshot, advance the week, and reseed progress rows
for the new week from the instance's own template version. Each instance runs
in its own session and transaction, so one failure never touches another.

Re-running is safe. The snapshot for (instance, week) doubles as the
idempotency marker: an existing one means the week was already rolled over,
and the unique constraint on it turns a concurrent duplicate into a skip. An
instance that is several weeks behind advances one week per run: a system
snapshot younger than `reset_min_interval_days` leaves it alone.

Every instance gets its own deadline, measured from when its worker picks it
up. The worker and the batch loop race to settle it: the worker claims it
right before committing, the loop claims it when the deadline passes, and the
loser backs off. A timed-out worker therefore rolls back instead of saving a
rollover that was already reported as failed.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from core.clock import local_now, utc_naive, utcnow
from core.config import settings
from core.context import SYSTEM_ACTOR, ActorContext
from core.errors import NotFoundError, PermissionDenied, TransientStoreError, classify_store_error
from core.logging import log_event
from models.instance import OPEN_STATUSES, ScheduleInstance
from models.snapshot import PerformanceSnapshot
from schemas.reset import ResetIssue, ResetOutcome, ResetResponse, SnapshotPreview
from services.instance_service import generate_week_progress, get_week_rows, latest_snapshot, recompute_progress_cache
from services.notification_service import NotificationDispatcher, notify_safely
from services.snapshot_service import PreviousWeek, WeeklyMetrics, compute_weekly_metrics
from services.template_service import get_template

logger = logging.getLogger(__name__)

_WORKER = "worker"
_TIMED_OUT = "timed_out"
_IDLE_POLL_SECONDS = 0.05


@dataclass
class _Result:
    outcome: ResetOutcome | None = None
    skipped: str | None = None
    preview: SnapshotPreview | None = None


class _Attempt:
    """One instance inside a batch, settled by whichever side claims it first."""

    def __init__(self, instance_id: str):
        self.instance_id = instance_id
        self.started_at: float | None = None
        self.future: Future | None = None
        self._lock = threading.Lock()
        self._owner: str | None = None

    def claim(self, owner: str) -> bool:
        with self._lock:
            if self._owner is None:
                self._owner = owner
            return self._owner == owner

    def release(self) -> None:
        # A failed commit hands the deadline back to the batch loop.
        with self._lock:
            if self._owner == _WORKER:
                self._owner = None

    @property
    def committing(self) -> bool:
        return self._owner == _WORKER

    def expires_at(self, timeout: float) -> float | None:
        if self.started_at is None:
            return None
        # A commit in flight gets one more timeout before it is given up on.
        return self.started_at + timeout * (2 if self.committing else 1)


class ResetProcessor:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        dispatcher: NotificationDispatcher | None = None,
        *,
        batch_size: int | None = None,
        max_workers: int | None = None,
        instance_timeout: float | None = None,
        retry_attempts: int | None = None,
        retry_backoff: float | None = None,
        streak_threshold: int | None = None,
        min_interval_days: float | None = None,
    ):
        self.session_factory = session_factory
        self.dispatcher = dispatcher
        self.batch_size = batch_size or settings.reset_batch_size
        self.max_workers = max_workers or settings.reset_max_workers
        self.instance_timeout = instance_timeout if instance_timeout is not None else settings.reset_instance_timeout_seconds
        self.retry_attempts = retry_attempts if retry_attempts is not None else settings.reset_retry_attempts
        self.retry_backoff = retry_backoff if retry_backoff is not None else settings.reset_retry_backoff_seconds
        self.streak_threshold = streak_threshold if streak_threshold is not None else settings.streak_threshold
        self.min_interval = timedelta(
            days=min_interval_days if min_interval_days is not None else settings.reset_min_interval_days
        )

    # --- candidates ---------------------------------------------------------

    def find_due_instances(self, now: datetime | None = None) -> list[str]:
        cutoff = local_now(now)
        with self.session_factory() as db:
            rows = db.execute(
                select(ScheduleInstance.id)
                .where(
                    ScheduleInstance.status.in_(OPEN_STATUSES),
                    ScheduleInstance.current_week_end_date < cutoff,
                )
                .order_by(ScheduleInstance.current_week_end_date.asc(), ScheduleInstance.id.asc())
            ).all()
        return [r[0] for r in rows]

    # --- one instance -------------------------------------------------------

    def _metrics(self, db: Session, instance: ScheduleInstance) -> WeeklyMetrics:
        rows = get_week_rows(db, instance.id, instance.current_week_number)
        prev = latest_snapshot(db, instance.id)
        previous = PreviousWeek(prev.completion_rate, int(prev.streak_weeks)) if prev else None
        return compute_weekly_metrics(rows, previous, self.streak_threshold)

    def _recently_rolled_over(self, db: Session, instance: ScheduleInstance, run_at: datetime) -> str | None:
        last = latest_snapshot(db, instance.id)
        if not last or last.generated_by != "system" or last.created_at is None:
            return None
        age = run_at - last.created_at
        if age >= self.min_interval:
            return None
        days = max(age.total_seconds(), 0) / 86400
        return f"Week {last.week_number} was rolled over {days:.1f} days ago."

    def _process(
        self, instance_id: str, run_at: datetime, dry_run: bool, attempt: _Attempt | None = None
    ) -> _Result:
        cutoff = local_now(run_at)
        with self.session_factory() as db:
            instance = db.get(ScheduleInstance, instance_id)
            if not instance:
                raise NotFoundError(f"Schedule instance {instance_id} not found.")
            if instance.status not in OPEN_STATUSES:
                return _Result(skipped=f"Instance is {instance.status}.")
            if instance.current_week_end_date >= cutoff:
                return _Result(skipped=f"Week {instance.current_week_number} has not ended yet.")

            week = instance.current_week_number
            exists = db.execute(
                select(PerformanceSnapshot.id).where(
                    PerformanceSnapshot.schedule_instance_id == instance.id,
                    PerformanceSnapshot.week_number == week,
                )
            ).first()
            if exists:
                return _Result(skipped=f"Snapshot for week {week} already exists.")
            recent = self._recently_rolled_over(db, instance, run_at)
            if recent:
                return _Result(skipped=recent)

            metrics = self._metrics(db, instance)
            if dry_run:
                return _Result(
                    preview=SnapshotPreview(
                        id=instance.id,
                        week_number=week,
                        completion_rate=metrics.completion_rate,
                        streak_weeks=metrics.streak_weeks,
                        challenges=list(metrics.insights.get("challenges", [])),
                    )
                )

            snapshot = PerformanceSnapshot(
                schedule_instance_id=instance.id,
                student_id=instance.student_id,
                week_number=week,
                week_start_date=instance.current_week_start_date,
                week_end_date=instance.current_week_end_date,
                engagement=metrics.engagement,
                performance=metrics.performance,
                activity_type_analysis=metrics.activity_type_analysis,
                daily_breakdown=metrics.daily_breakdown,
                insights=metrics.insights,
                streak_weeks=metrics.streak_weeks,
                generated_by="system",
                created_at=run_at,
            )
            db.add(snapshot)
            try:
                db.flush()
            except IntegrityError:
                db.rollback()
                return _Result(skipped=f"Snapshot for week {week} was written by a concurrent run.")

            template = get_template(db, instance.template_id)
            new_start = instance.current_week_start_date + timedelta(days=7)
            instance.current_week_number = week + 1
            instance.current_week_start_date = new_start
            instance.current_week_end_date = instance.current_week_end_date + timedelta(days=7)

            new_rows = []
            completed = new_start.date() > template.end_date
            if completed:
                instance.status = "completed"
                instance.completed_at = utcnow()
            elif template.reset_on_repeat:
                new_rows = generate_week_progress(db, instance, week + 1, new_start)

            recompute_progress_cache(db, instance)
            if attempt is not None and not attempt.claim(_WORKER):
                db.rollback()
                return _Result(skipped="Timed out before commit; rolled back.")
            try:
                db.commit()
            except Exception:
                if attempt is not None:
                    attempt.release()
                raise

            return _Result(
                outcome=ResetOutcome(
                    id=instance.id,
                    old_week=week,
                    new_week=week + 1,
                    snapshot_id=snapshot.id,
                    new_activities=len(new_rows),
                    completed=completed,
                )
            )

    def _process_with_retry(
        self, instance_id: str, run_at: datetime, dry_run: bool, attempt: _Attempt | None = None
    ) -> _Result:
        retries = 0
        stale_retried = False
        delay = self.retry_backoff
        while True:
            try:
                return self._process(instance_id, run_at, dry_run, attempt)
            except StaleDataError:
                # A student wrote to the instance mid-rollover; nothing was saved, so start over once.
                if stale_retried:
                    raise
                stale_retried = True
                logger.warning("Instance %s changed during rollover. Retrying from a fresh read...", instance_id)
            except Exception as exc:
                if not isinstance(classify_store_error(exc), TransientStoreError) or retries >= self.retry_attempts:
                    raise
                retries += 1
                logger.warning(
                    "Attempt %d/%d failed for instance %s: %s. Retrying in %ss...",
                    retries,
                    self.retry_attempts + 1,
                    instance_id,
                    exc,
                    delay,
                )
                time.sleep(delay)
                delay *= 2

    def _work(self, attempt: _Attempt, run_at: datetime, dry_run: bool) -> _Result:
        attempt.started_at = time.monotonic()
        return self._process_with_retry(attempt.instance_id, run_at, dry_run, attempt)

    # --- run ----------------------------------------------------------------

    def _next_wait(self, pending: list[_Attempt]) -> float:
        deadlines = [d for d in (a.expires_at(self.instance_timeout) for a in pending) if d is not None]
        if not deadlines:
            return _IDLE_POLL_SECONDS
        return max(0.0, min(deadlines) - time.monotonic())

    def _run_batch(self, batch: list[str], run_at: datetime, dry_run: bool, response: ResetResponse) -> None:
        pools: list[ThreadPoolExecutor] = []

        def submit(attempts: list[_Attempt]) -> None:
            pool = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="weekly-reset")
            pools.append(pool)
            for a in attempts:
                a.future = pool.submit(self._work, a, run_at, dry_run)

        pending = [_Attempt(iid) for iid in batch]
        submit(pending)
        try:
            while pending:
                wait([a.future for a in pending], timeout=self._next_wait(pending), return_when=FIRST_COMPLETED)
                now = time.monotonic()
                lost_worker = False
                for a in list(pending):
                    if a.future.done():
                        pending.remove(a)
                        self._collect(a, response)
                        continue
                    expires = a.expires_at(self.instance_timeout)
                    if expires is None or now < expires:
                        continue
                    if a.claim(_TIMED_OUT):
                        reason = f"Timed out after {self.instance_timeout:g}s; nothing was saved."
                    elif a.committing:
                        reason = f"Timed out after {self.instance_timeout:g}s while committing; the rollover may have been saved."
                    else:
                        continue
                    pending.remove(a)
                    lost_worker = True
                    self._record_failure(response, a.instance_id, "timeout", reason)

                # A hung worker keeps its thread; whatever is still queued behind it moves to a fresh pool.
                if lost_worker:
                    queued = [a for a in pending if a.started_at is None and a.future.cancel()]
                    if queued:
                        submit(queued)
        finally:
            for pool in pools:
                pool.shutdown(wait=False, cancel_futures=True)

    def _collect(self, attempt: _Attempt, response: ResetResponse) -> None:
        iid = attempt.instance_id
        try:
            result = attempt.future.result()
        except Exception as exc:
            err = classify_store_error(exc)
            if err is None:
                logger.exception("Unexpected error resetting instance %s", iid)
                self._record_failure(response, iid, "internal", str(exc) or exc.__class__.__name__)
            else:
                self._record_failure(response, iid, err.kind, err.message)
            return

        if result.skipped:
            response.skipped.append(ResetIssue(id=iid, reason=result.skipped))
            log_event(logger, "reset.instance.skipped", instance_id=iid, reason=result.skipped)
        elif result.preview:
            response.previews.append(result.preview)
        elif result.outcome:
            response.successful.append(result.outcome)
            log_event(
                logger,
                "reset.instance.succeeded",
                instance_id=iid,
                old_week=result.outcome.old_week,
                new_week=result.outcome.new_week,
                new_activities=result.outcome.new_activities,
                completed=result.outcome.completed,
            )

    def _record_failure(self, response: ResetResponse, instance_id: str, kind: str, reason: str) -> None:
        response.failed.append(ResetIssue(id=instance_id, reason=reason, error_type=kind))
        response.errors.append(f"{instance_id}: {reason}")
        log_event(
            logger, "reset.instance.failed", level=logging.WARNING, instance_id=instance_id, error_type=kind, reason=reason
        )

    def run(
        self,
        *,
        dry_run: bool = False,
        batch_size: int | None = None,
        instance_ids: list[str] | None = None,
        now: datetime | None = None,
        actor: ActorContext = SYSTEM_ACTOR,
    ) -> ResetResponse:
        if not actor.is_coordinator:
            raise PermissionDenied("Coordinator access required to run the weekly reset.")

        started = time.monotonic()
        run_at = utc_naive(now)
        size = batch_size or self.batch_size
        candidates = list(dict.fromkeys(instance_ids)) if instance_ids else self.find_due_instances(run_at)

        log_event(
            logger,
            "reset.run.started",
            actor_id=actor.actor_id,
            dry_run=dry_run,
            candidates=len(candidates),
            batch_size=size,
            targeted=bool(instance_ids),
        )

        response = ResetResponse(
            processed_instances=0,
            generated_snapshots=0,
            errors=[],
            dry_run=dry_run,
            successful=[],
            skipped=[],
            failed=[],
            previews=[],
        )
        for i in range(0, len(candidates), size):
            self._run_batch(candidates[i : i + size], run_at, dry_run, response)

        response.processed_instances = len(response.successful)
        response.generated_snapshots = sum(1 for o in response.successful if o.snapshot_id)

        log_event(
            logger,
            "reset.run.finished",
            dry_run=dry_run,
            processed=response.processed_instances,
            snapshots=response.generated_snapshots,
            skipped=len(response.skipped),
            failed=len(response.failed),
            previews=len(response.previews),
            elapsed_ms=int((time.monotonic() - started) * 1000),
        )

        if not dry_run:
            notify_safely(
                self.dispatcher,
                "Weekly reset finished",
                f"{response.processed_instances} schedules processed, {response.generated_snapshots} reports generated",
                {
                    "processed_instances": response.processed_instances,
                    "generated_snapshots": response.generated_snapshots,
                    "error_count": len(response.errors),
                },
            )
        return response
