"""Health check endpoints."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from fhir_sync.config import get_settings
from fhir_sync.dependencies import Source
from fhir_sync.errors import FHIRSyncError

router = APIRouter(tags=["system"])
logger = logging.getLogger("fhir_sync.health")


@router.get("/health")
async def health_check(request: Request) -> dict:
    """Liveness probe. Returns 200 if the process is up.

    Also reports the state of the scheduled trigger.
    """
    settings = get_settings()
    scheduler = getattr(request.app.state, "scheduler", None)
    auto_sync: dict[str, Any] = {"enabled": scheduler is not None}
    if scheduler is not None:
        auto_sync.update(
            running=scheduler.is_running,
            intervalSeconds=scheduler.interval_seconds,
            lastRunAt=scheduler.last_run_at.isoformat() if scheduler.last_run_at else None,
            lastError=scheduler.last_error,
        )

    return {
        "status": "healthy",
        "version": settings.app_version,
        "environment": settings.environment,
        "autoSync": auto_sync,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/health/source")
async def source_health(source: Source) -> Any:
    """Readiness probe: authenticate against the source and read its metadata."""
    try:
        statement = await source.get_capability_statement()
    except FHIRSyncError as exc:
        logger.warning("Source health probe failed: %s", exc)
        return JSONResponse(
            status_code=503,
            content={"status": "unreachable", "error": str(exc)},
        )

    software = statement.get("software") or {}
    return {
        "status": "reachable",
        "fhirVersion": statement.get("fhirVersion"),
        "software": software.get("name"),
    }
