import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from api.router import api_router
from core.config import settings
from core.errors import ScheduleError, classify_store_error
from core.logging import configure_logging
from database.session import SessionLocal, init_db
from services.notification_service import StoreNotificationDispatcher
from services.reset_service import ResetProcessor
from services.scheduler import WeeklyResetScheduler

logger = logging.getLogger(__name__)


def _error_body(err: ScheduleError) -> dict:
    return {"detail": err.message, "error_type": err.kind, "errors": err.details}


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(title=settings.app_name)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.frontend_origin],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ScheduleError)
    async def _schedule_error(request: Request, exc: ScheduleError):
        return JSONResponse(status_code=exc.status_code, content=_error_body(exc))

    @app.exception_handler(SQLAlchemyError)
    async def _store_error(request: Request, exc: SQLAlchemyError):
        err = classify_store_error(exc)
        if err is None:
            logger.error("Unhandled store error on %s %s", request.method, request.url.path, exc_info=exc)
            return JSONResponse(status_code=500, content={"detail": "Internal server error.", "error_type": "internal"})
        return JSONResponse(status_code=err.status_code, content=_error_body(err))

    app.include_router(api_router, prefix=settings.api_prefix)

    @app.get("/health")
    def health():
        return {"status": "ok"}

    return app


app = create_app()
_scheduler: WeeklyResetScheduler | None = None


@app.on_event("startup")
def _startup():
    global _scheduler
    init_db()
    if settings.reset_scheduler_enabled:
        processor = ResetProcessor(SessionLocal, StoreNotificationDispatcher(SessionLocal))
        _scheduler = WeeklyResetScheduler(processor.run)
        _scheduler.start()


@app.on_event("shutdown")
def _shutdown():
    if _scheduler is not None:
        _scheduler.stop()
