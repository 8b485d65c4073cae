from fastapi import APIRouter
from fastapi.responses import JSONResponse

from api.deps import CoordinatorDep, DispatcherDep, SessionFactoryDep
from schemas.reset import ResetRequest, ResetResponse
from services.reset_service import ResetProcessor

router = APIRouter()


@router.post("/run", response_model=ResetResponse)
def run_reset(payload: ResetRequest, actor: CoordinatorDep, factory: SessionFactoryDep, dispatcher: DispatcherDep):
    processor = ResetProcessor(factory, dispatcher)
    result = processor.run(
        dry_run=payload.dry_run,
        batch_size=payload.batch_size,
        instance_ids=payload.instance_ids,
        actor=actor,
    )
    # Keep processedInstances / generatedSnapshots / dryRun on the wire.
    return JSONResponse(result.model_dump(mode="json", by_alias=True))
