"""Pydantic models for the on-demand sync handlers."""

from __future__ import annotations

from typing import Any

from pydantic import Field

from fhir_sync.models.base import SyncBase
from fhir_sync.sync.orchestrator import SyncResult, SyncSummary


# ---------- Requests ----------
# Identifiers are optional at the schema level so that a missing value is
# answered with a 400 naming the parameter rather than a validation error.


class PatientSyncRequest(SyncBase):
    patient_id: str | None = Field(default=None, alias="patientId")


class ObservationSyncRequest(SyncBase):
    observation_id: str | None = Field(default=None, alias="observationId")


class ResourceSyncRequest(SyncBase):
    resource_id: str | None = Field(default=None, alias="resourceId")


# ---------- Responses ----------


class SyncResultRead(SyncBase):
    success: bool
    resource_type: str = Field(alias="resourceType")
    resource_id: str = Field(alias="resourceId")
    error: str | None = None

    @classmethod
    def from_result(cls, result: SyncResult) -> "SyncResultRead":
        return cls(
            success=result.success,
            resource_type=result.resource_type,
            resource_id=result.resource_id,
            error=result.error,
        )


class SyncSummaryRead(SyncBase):
    total: int
    succeeded: int
    failed: int

    @classmethod
    def from_summary(cls, summary: SyncSummary) -> "SyncSummaryRead":
        return cls(total=summary.total, succeeded=summary.succeeded, failed=summary.failed)


class SingleSyncResponse(SyncBase):
    message: str
    result: SyncResultRead


class CascadeSyncResponse(SyncBase):
    message: str
    results: list[SyncResultRead]
    summary: SyncSummaryRead


class AutoSyncResponse(SyncBase):
    message: str
    report: dict[str, Any]
