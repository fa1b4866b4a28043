"""fhir-sync API — FastAPI application entry point.

Run locally:
    uvicorn fhir_sync.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from fhir_sync.config import get_settings
from fhir_sync.dependencies import orchestrator_session
from fhir_sync.errors import FHIRSyncError
from fhir_sync.middleware.function_key import FunctionKeyMiddleware
from fhir_sync.models.base import ErrorResponse
from fhir_sync.routers import health, sync
from fhir_sync.sync.scheduler import AutoSyncScheduler

logger = logging.getLogger("fhir_sync")


# ---------- Logging ----------

def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
    )


# ---------- Lifespan ----------

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup / shutdown hooks: start the scheduled trigger when enabled."""
    settings = get_settings()
    logger.info(
        "Starting fhir-sync API v%s [%s]",
        settings.app_version,
        settings.environment,
    )
    scheduler: AutoSyncScheduler | None = None
    if settings.auto_sync_enabled:
        scheduler = AutoSyncScheduler(
            orchestrator_factory=lambda: orchestrator_session(settings),
            interval_seconds=settings.auto_sync_interval_seconds,
            lookback_seconds=settings.auto_sync_lookback_seconds,
        )
        scheduler.start()
    app.state.scheduler = scheduler
    yield
    if scheduler is not None:
        await scheduler.stop()
    logger.info("fhir-sync API shut down")


# ---------- Error handling ----------

async def sync_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Render engine errors that escaped a handler (failed searches, auth setup)."""
    logger.error("Unhandled sync error on %s: %s", request.url.path, exc)
    body = ErrorResponse(error="Internal server error", message=str(exc))
    return JSONResponse(status_code=500, content=body.model_dump(exclude_none=True))


# ---------- App factory ----------

def create_app() -> FastAPI:
    settings = get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="fhir-sync API",
        description=(
            "One-way FHIR resource sync from the source clinical-records system "
            "to the destination clinical-data store."
        ),
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    app.add_middleware(FunctionKeyMiddleware, settings=settings)
    app.add_exception_handler(FHIRSyncError, sync_error_handler)

    # ---------- Health probes (unprefixed) ----------
    app.include_router(health.router)

    # ---------- API v1 routes ----------
    app.include_router(sync.router, prefix="/api/v1")

    return app


app = create_app()
