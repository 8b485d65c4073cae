from fastapi import APIRouter, status

from api.deps import ActorDep, DbDep
from schemas.assignment import AssignmentResult, AssignRequest
from schemas.template import (
    ActivityResponse,
    TemplateCreate,
    TemplateDetailResponse,
    TemplateListResponse,
    TemplateUpdate,
)
from services.assignment_service import assign_to_students
from services.template_service import (
    archive_template,
    create_template,
    get_visible_template,
    list_activities,
    list_owner_templates,
    list_template_versions,
    to_activity_response,
    to_detail_response,
    to_response,
    update_template,
)

router = APIRouter()


@router.get("", response_model=TemplateListResponse)
def list_templates(db: DbDep, actor: ActorDep, include_archived: bool = False):
    templates = list_owner_templates(db, actor.actor_id, include_archived=include_archived)
    return TemplateListResponse(templates=[to_response(db, t) for t in templates])


@router.post("", response_model=TemplateDetailResponse, status_code=status.HTTP_201_CREATED)
def create(payload: TemplateCreate, db: DbDep, actor: ActorDep):
    return to_detail_response(db, create_template(db, actor, payload))


@router.get("/{template_id}", response_model=TemplateDetailResponse)
def get_one(template_id: str, db: DbDep, actor: ActorDep):
    return to_detail_response(db, get_visible_template(db, template_id, actor))


@router.put("/{template_id}", response_model=TemplateDetailResponse)
def fork(template_id: str, payload: TemplateUpdate, db: DbDep, actor: ActorDep):
    return to_detail_response(db, update_template(db, template_id, actor, payload))


@router.post("/{template_id}/archive", response_model=TemplateDetailResponse)
def archive(template_id: str, db: DbDep, actor: ActorDep):
    return to_detail_response(db, archive_template(db, template_id, actor))


@router.get("/{template_id}/activities", response_model=list[ActivityResponse])
def activities(template_id: str, db: DbDep, actor: ActorDep):
    template = get_visible_template(db, template_id, actor)
    return [to_activity_response(a) for a in list_activities(db, template.id)]


@router.get("/{template_id}/versions", response_model=TemplateListResponse)
def versions(template_id: str, db: DbDep, actor: ActorDep):
    get_visible_template(db, template_id, actor)
    return TemplateListResponse(templates=[to_response(db, t) for t in list_template_versions(db, template_id)])


@router.post("/{template_id}/assign", response_model=AssignmentResult)
def assign(template_id: str, payload: AssignRequest, db: DbDep, actor: ActorDep):
    return assign_to_students(db, template_id, payload.student_ids, actor)
