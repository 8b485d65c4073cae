from fastapi import APIRouter

from api.deps import ActorDep, DbDep
from schemas.instance import InstanceListResponse, InstanceResponse, SnapshotListResponse
from schemas.progress import ProgressListResponse
from services.instance_service import (
    ensure_can_view,
    get_instance,
    get_week_progress,
    list_snapshots,
    list_visible_instances,
    pause_instance,
    resume_instance,
    to_progress_item,
    to_response,
    to_snapshot_response,
)

router = APIRouter()


@router.get("", response_model=InstanceListResponse)
def list_instances(db: DbDep, actor: ActorDep, student_id: str | None = None, include_completed: bool = False):
    items = list_visible_instances(db, actor, student_id=student_id, include_completed=include_completed)
    return InstanceListResponse(instances=[to_response(i) for i in items])


@router.get("/{instance_id}", response_model=InstanceResponse)
def get_one(instance_id: str, db: DbDep, actor: ActorDep):
    instance = get_instance(db, instance_id)
    ensure_can_view(db, instance, actor)
    return to_response(instance)


@router.post("/{instance_id}/pause", response_model=InstanceResponse)
def pause(instance_id: str, db: DbDep, actor: ActorDep):
    return to_response(pause_instance(db, instance_id, actor))


@router.post("/{instance_id}/resume", response_model=InstanceResponse)
def resume(instance_id: str, db: DbDep, actor: ActorDep):
    return to_response(resume_instance(db, instance_id, actor))


@router.get("/{instance_id}/weeks/{week_number}", response_model=ProgressListResponse)
def week(instance_id: str, week_number: int, db: DbDep, actor: ActorDep):
    rows = get_week_progress(db, instance_id, week_number, actor)
    return ProgressListResponse(items=[to_progress_item(r) for r in rows])


@router.get("/{instance_id}/snapshots", response_model=SnapshotListResponse)
def snapshots(instance_id: str, db: DbDep, actor: ActorDep):
    items = list_snapshots(db, instance_id, actor)
    return SnapshotListResponse(schedule_instance_id=instance_id, snapshots=[to_snapshot_response(s) for s in items])
