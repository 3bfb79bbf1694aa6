import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from academy.api.v1.attendance.router import router as attendance_router
from academy.api.v1.auth.router import router as auth_router
from academy.api.v1.branches.router import router as branches_router
from academy.api.v1.budgets.router import router as budgets_router
from academy.api.v1.courses.router import router as courses_router
from academy.api.v1.reports.router import dashboard_router
from academy.api.v1.reports.router import router as reports_router
from academy.api.v1.students.router import router as students_router
from academy.api.v1.transactions.router import router as transactions_router
from academy.api.v1.users.router import router as users_router
from academy.core.config import settings
from academy.core.exceptions import ValidationFailed
from academy.core.schemas import FieldError

logger = logging.getLogger(__name__)


def _field_name(loc) -> str:
    # ("body", "records", 0, "status") -> "records.0.status"
    parts = [str(p) for p in loc if p not in ("body", "query", "path", "form")]
    return ".".join(parts) or "request"


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [FieldError(field=_field_name(err.get("loc", ())), message=err.get("msg", "")) for err in exc.errors()]
    failure = ValidationFailed("Validation failed", errors)
    return JSONResponse(status_code=failure.status_code, content={"detail": failure.to_detail()})


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    message = "Internal server error" if settings.is_production else str(exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": {"kind": "InternalError", "message": message}},
    )


def create_app() -> FastAPI:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app = FastAPI(title="Academy Management Backend")

    # CORS: allow the admin frontend to call this API
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    # Routers
    app.include_router(auth_router)
    app.include_router(branches_router)
    app.include_router(users_router)
    app.include_router(courses_router)
    app.include_router(students_router)
    app.include_router(attendance_router)
    app.include_router(transactions_router)
    app.include_router(budgets_router)
    app.include_router(dashboard_router)
    app.include_router(reports_router)

    @app.get("/api/health", tags=["health"])
    async def health():
        return {"status": "ok", "environment": settings.environment}

    return app


app = create_app()
