"""Shared Pydantic base models."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class SyncBase(BaseModel):
    """Base model with shared config for all fhir_sync schemas.

    Fields use snake_case names with camelCase aliases; both are accepted on
    input and responses are serialized by alias.
    """

    model_config = ConfigDict(
        populate_by_name=True,
        str_strip_whitespace=True,
    )


class ErrorResponse(BaseModel):
    error: str
    details: str | None = None
    message: str | None = None
