"""
FastAPI application entry point.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from spontaneous_connect import __version__
from spontaneous_connect.config import get_settings
from spontaneous_connect.scheduling import persistence_models  # noqa: F401
from spontaneous_connect.scheduling.router import router as scheduling_router
from spontaneous_connect.scheduling.schemas import ErrorResponse
from spontaneous_connect.shared.database import get_database_manager
from spontaneous_connect.shared.exceptions import (
    ConcurrentModification,
    ConfigurationError,
    NoValidSlot,
    PersistenceUnavailable,
    SchedulingError,
)
from spontaneous_connect.shared.logging import get_logger, setup_logging

logger = get_logger(__name__)

ERROR_STATUS: dict[type[SchedulingError], tuple[int, str]] = {
    ConfigurationError: (422, "CONFIGURATION_ERROR"),
    NoValidSlot: (status.HTTP_409_CONFLICT, "NO_VALID_SLOT"),
    ConcurrentModification: (status.HTTP_409_CONFLICT, "CONCURRENT_MODIFICATION"),
    PersistenceUnavailable: (status.HTTP_503_SERVICE_UNAVAILABLE, "PERSISTENCE_UNAVAILABLE"),
}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    settings = get_settings()
    setup_logging(settings)

    logger.info("Application starting", extra={"env": settings.app_env})

    db_manager = get_database_manager()
    if settings.database_create_tables:
        await db_manager.create_all()
        logger.info("Database tables ensured")

    yield

    logger.info("Shutting down application")
    await db_manager.close()
    logger.info("Application shutdown complete")


def error_response(exc: SchedulingError) -> JSONResponse:
    status_code, code = ERROR_STATUS.get(
        type(exc), (status.HTTP_500_INTERNAL_SERVER_ERROR, "SCHEDULING_ERROR")
    )
    body = ErrorResponse(
        code=code,
        message=exc.message,
        retryable=exc.retryable,
        details=exc.details,
    )
    return JSONResponse(status_code=status_code, content={"detail": body.model_dump()})


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Spontaneous Connect API",
        description="Randomized recurring call scheduling",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )

    # Map scheduling errors to HTTP responses
    @app.exception_handler(SchedulingError)
    async def _scheduling_error(request: Request, exc: SchedulingError) -> JSONResponse:
        response = error_response(exc)
        logger.info(
            "Scheduling request rejected",
            extra={
                "path": request.url.path,
                "error": type(exc).__name__,
                "status_code": response.status_code,
            },
        )
        return response

    # Request validation (FastAPI/Pydantic) -> consistent 422 payload
    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request,
        exc: RequestValidationError,
    ) -> JSONResponse:
        errors = []
        for error in exc.errors():
            field = ".".join(str(loc) for loc in error["loc"])
            errors.append(
                {
                    "field": field,
                    "message": error["msg"],
                    "type": error["type"],
                }
            )
        return JSONResponse(
            status_code=422,
            content={
                "detail": {
                    "code": "VALIDATION_ERROR",
                    "message": "Request validation failed",
                    "errors": errors,
                }
            },
        )

    app.include_router(scheduling_router)

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        return {"status": "healthy"}

    return app


app = create_app()
