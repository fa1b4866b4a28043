"""Shared FastAPI dependencies and client wiring.

Clients are built per invocation from settings: each request (or scheduled
run) gets its own source and destination client, so cached tokens are never
shared between concurrent orchestrations.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Annotated, AsyncGenerator

from fastapi import Depends

from fhir_sync.clients import DestinationClient, DestinationConfig, SourceClient, SourceConfig
from fhir_sync.config import Settings, get_settings
from fhir_sync.sync.orchestrator import SyncOrchestrator
from fhir_sync.sync.retry import RetryPolicy


def build_source_client(settings: Settings) -> SourceClient:
    return SourceClient(
        SourceConfig.from_settings(settings), timeout=settings.http_timeout_seconds
    )


def build_destination_client(settings: Settings) -> DestinationClient:
    return DestinationClient(
        DestinationConfig.from_settings(settings), timeout=settings.http_timeout_seconds
    )


@asynccontextmanager
async def orchestrator_session(
    settings: Settings | None = None,
) -> AsyncGenerator[SyncOrchestrator, None]:
    """Yield an orchestrator over fresh clients and close them afterwards."""
    s = settings or get_settings()
    async with build_source_client(s) as source, build_destination_client(s) as destination:
        yield SyncOrchestrator(
            source,
            destination,
            retry_policy=RetryPolicy(
                max_attempts=s.retry_max_attempts,
                base_delay=s.retry_base_delay_seconds,
                backoff_factor=s.retry_backoff_factor,
            ),
            concurrency=s.sync_concurrency,
        )


async def get_orchestrator() -> AsyncGenerator[SyncOrchestrator, None]:
    async with orchestrator_session() as orchestrator:
        yield orchestrator


async def get_source_client() -> AsyncGenerator[SourceClient, None]:
    async with build_source_client(get_settings()) as client:
        yield client


# Annotated shortcuts for route signatures
Orchestrator = Annotated[SyncOrchestrator, Depends(get_orchestrator)]
Source = Annotated[SourceClient, Depends(get_source_client)]
AppSettings = Annotated[Settings, Depends(get_settings)]
