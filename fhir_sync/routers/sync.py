"""On-demand sync endpoints.

Single-resource handlers answer 200 when the resource synced and 500 with the
failure details when it did not.  Errors raised by the engine itself (a failed
search, for example) are rendered by the ``FHIRSyncError`` handler in
``fhir_sync.main``.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from fhir_sync.clients.base import utc_now
from fhir_sync.dependencies import AppSettings, Orchestrator
from fhir_sync.models.base import ErrorResponse
from fhir_sync.models.sync import (
    AutoSyncResponse,
    CascadeSyncResponse,
    ObservationSyncRequest,
    PatientSyncRequest,
    ResourceSyncRequest,
    SingleSyncResponse,
    SyncResultRead,
    SyncSummaryRead,
)
from fhir_sync.sync.orchestrator import SyncResult
from fhir_sync.sync.scheduler import run_auto_sync

router = APIRouter(prefix="/sync", tags=["sync"])
logger = logging.getLogger("fhir_sync.api.sync")

_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    400: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
}


def _missing(parameter: str) -> JSONResponse:
    body = ErrorResponse(error=f"Missing required parameter: {parameter}")
    return JSONResponse(status_code=400, content=body.model_dump(exclude_none=True))


def _single_response(result: SyncResult) -> Any:
    ref = f"{result.resource_type}/{result.resource_id}"
    if result.success:
        return SingleSyncResponse(
            message=f"Successfully synced {ref}",
            result=SyncResultRead.from_result(result),
        )
    logger.warning("On-demand sync of %s failed: %s", ref, result.error)
    return JSONResponse(
        status_code=500,
        content={
            "error": f"Failed to sync {ref}",
            "details": result.error,
            "result": result.to_json(),
        },
    )


# ---------- Single resources ----------

@router.post(
    "/patient",
    response_model=SingleSyncResponse,
    response_model_exclude_none=True,
    responses=_ERROR_RESPONSES,
)
async def sync_patient(orchestrator: Orchestrator, body: PatientSyncRequest | None = None) -> Any:
    if body is None or not body.patient_id:
        return _missing("patientId")
    result = await orchestrator.sync_resource("Patient", body.patient_id)
    return _single_response(result)


@router.post(
    "/observation",
    response_model=SingleSyncResponse,
    response_model_exclude_none=True,
    responses=_ERROR_RESPONSES,
)
async def sync_observation(
    orchestrator: Orchestrator, body: ObservationSyncRequest | None = None
) -> Any:
    if body is None or not body.observation_id:
        return _missing("observationId")
    result = await orchestrator.sync_resource("Observation", body.observation_id)
    return _single_response(result)


@router.post(
    "/resources/{resource_type}",
    response_model=SingleSyncResponse,
    response_model_exclude_none=True,
    responses=_ERROR_RESPONSES,
)
async def sync_any_resource(
    resource_type: str, orchestrator: Orchestrator, body: ResourceSyncRequest | None = None
) -> Any:
    if body is None or not body.resource_id:
        return _missing("resourceId")
    result = await orchestrator.sync_resource(resource_type, body.resource_id)
    return _single_response(result)


# ---------- Cascades ----------

@router.post(
    "/patient-with-observations",
    response_model=CascadeSyncResponse,
    response_model_exclude_none=True,
    responses=_ERROR_RESPONSES,
)
async def sync_patient_with_observations(
    orchestrator: Orchestrator, body: PatientSyncRequest | None = None
) -> Any:
    if body is None or not body.patient_id:
        return _missing("patientId")
    cascade = await orchestrator.sync_patient_with_dependents(body.patient_id)
    summary = cascade.summary
    return CascadeSyncResponse(
        message=f"Sync completed: {summary.succeeded} succeeded, {summary.failed} failed",
        results=[SyncResultRead.from_result(r) for r in cascade.results],
        summary=SyncSummaryRead.from_summary(summary),
    )


@router.post("/auto", response_model=AutoSyncResponse, responses=_ERROR_RESPONSES)
async def trigger_auto_sync(orchestrator: Orchestrator, settings: AppSettings) -> Any:
    """Run one scheduled-trigger pass immediately."""
    since = None
    if settings.auto_sync_lookback_seconds is not None:
        since = utc_now() - timedelta(seconds=settings.auto_sync_lookback_seconds)
    report = await run_auto_sync(orchestrator, last_updated_since=since)
    summary = report.summary
    return AutoSyncResponse(
        message=f"Auto-sync completed: {summary.succeeded} succeeded, {summary.failed} failed",
        report=report.to_json(),
    )
