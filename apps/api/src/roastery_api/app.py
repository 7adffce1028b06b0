from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger

from roastery_api.core.settings import settings
from roastery_api.db.session import async_session
from .api.routes import api_router
from .core.logging import configure_logging
from .observability.tracing import configure_tracing
from .workers import GradeSweepWorker


APP_VERSION = "0.1.0"


def _session_factory():
    return async_session()


@asynccontextmanager
async def lifespan(app: FastAPI):
    sweep_worker = GradeSweepWorker(
        session_factory=_session_factory,
        interval_seconds=settings.grade_sweep_interval_seconds,
        batch_size=settings.grade_sweep_batch_size,
    )
    app.state.grade_sweep_worker = sweep_worker

    sweep_enabled = settings.grade_sweep_worker_enabled
    if sweep_enabled:
        sweep_worker.start()
        logger.info(
            "Grade sweep worker enabled",
            interval_seconds=sweep_worker.interval_seconds,
            batch_size=sweep_worker.batch_size,
        )
    else:
        logger.info(
            "Grade sweep worker disabled",
            reason="grade_sweep_worker_enabled is false",
        )

    try:
        yield
    finally:
        if sweep_enabled and sweep_worker.is_running:
            await sweep_worker.stop()


async def _request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()))
    message = first.get("msg", "Invalid request")
    if location:
        message = f"{location}: {message}"
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": {"kind": "ValidationError", "message": message}},
    )


def create_app() -> FastAPI:
    """Application factory for the roastery commerce API."""
    configure_logging(
        service_name="roastery-api",
        environment=settings.environment,
        version=APP_VERSION,
    )

    app = FastAPI(
        title="Roastery Commerce API",
        version=APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    if settings.tracing_enabled:
        configure_tracing(
            app,
            service_name="roastery-api",
            service_version=APP_VERSION,
            environment=settings.environment,
        )

    app.add_exception_handler(RequestValidationError, _request_validation_handler)
    app.include_router(api_router)

    @app.get("/healthz", tags=["Health"])
    async def health_check() -> dict[str, str]:
        return {
            "status": "ok",
            "environment": settings.environment,
            "version": APP_VERSION,
        }

    return app
