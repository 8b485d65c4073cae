from fastapi import APIRouter

from api.routes import auth, instances, progress, reset, templates

api_router = APIRouter()

api_router.include_router(auth.router, tags=["auth"], prefix="/auth")
api_router.include_router(templates.router, tags=["templates"], prefix="/templates")
api_router.include_router(instances.router, tags=["instances"], prefix="/instances")
api_router.include_router(progress.router, tags=["progress"], prefix="/progress")
api_router.include_router(reset.router, tags=["reset"], prefix="/reset")
