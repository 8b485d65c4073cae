from fastapi import APIRouter

from api.deps import ActorDep, DbDep
from schemas.progress import (
    CompleteRequest,
    DraftRequest,
    ProgressItem,
    ProgressListResponse,
    QuizResult,
    QuizSubmitRequest,
    SkipRequest,
)
from services import progress_service
from services.instance_service import get_today_activities, to_progress_item

router = APIRouter()


@router.get("/today", response_model=ProgressListResponse)
def today(db: DbDep, actor: ActorDep):
    return ProgressListResponse(items=[to_progress_item(r) for r in get_today_activities(db, actor)])


@router.post("/{progress_id}/start", response_model=ProgressItem)
def start(progress_id: str, db: DbDep, actor: ActorDep):
    return to_progress_item(progress_service.start(db, progress_id, actor))


@router.post("/{progress_id}/complete", response_model=ProgressItem)
def complete(progress_id: str, payload: CompleteRequest, db: DbDep, actor: ActorDep):
    return to_progress_item(progress_service.complete(db, progress_id, actor, payload))


@router.post("/{progress_id}/skip", response_model=ProgressItem)
def skip(progress_id: str, payload: SkipRequest, db: DbDep, actor: ActorDep):
    return to_progress_item(progress_service.skip(db, progress_id, actor, payload.reason))


@router.post("/{progress_id}/draft", response_model=ProgressItem)
def draft(progress_id: str, payload: DraftRequest, db: DbDep, actor: ActorDep):
    return to_progress_item(progress_service.save_draft(db, progress_id, actor, payload.data))


@router.post("/{progress_id}/quiz", response_model=QuizResult)
def quiz(progress_id: str, payload: QuizSubmitRequest, db: DbDep, actor: ActorDep):
    row, result = progress_service.submit_quiz(db, progress_id, actor, payload.answers)
    return QuizResult(**result, progress=to_progress_item(row))
