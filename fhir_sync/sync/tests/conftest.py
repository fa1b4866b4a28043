"""In-memory ResourceClient fakes and recorders for sync tests."""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any

import pytest

from fhir_sync.clients.base import Bundle
from fhir_sync.errors import FetchError, PushError, SearchError
from fhir_sync.sync.orchestrator import SyncOrchestrator
from fhir_sync.sync.retry import RetryPolicy


class RecordingSleep:
    """Stand-in for ``asyncio.sleep`` that records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class RecordingEvents:
    """SyncEvents sink that keeps every emitted event."""

    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    def emit(self, event: str, **fields: Any) -> None:
        self.events.append((event, fields))

    def names(self) -> list[str]:
        return [name for name, _ in self.events]

    def of(self, name: str) -> list[dict[str, Any]]:
        return [fields for event, fields in self.events if event == name]


class _Tracking:
    def __init__(self) -> None:
        self.in_flight = 0
        self.max_in_flight = 0

    async def _enter(self) -> None:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        await asyncio.sleep(0)

    def _exit(self) -> None:
        self.in_flight -= 1


class InMemorySource(_Tracking):
    """Source fake backed by a dict.

    Attributes:
        resources:      Stored resources keyed by (resourceType, id).
        fetch_failures: (type, id) → number of leading fetches that fail.
                        ``float("inf")`` fails every fetch.
        bundles:        resourceType → explicit Bundle returned by search.
        search_error:   resourceType → SearchError raised by search.
        fetch_calls:    Every (type, id) fetched, in order.
        search_calls:   Every (type, params, last_updated_since) searched.
    """

    def __init__(self) -> None:
        super().__init__()
        self.resources: dict[tuple[str, str], dict] = {}
        self.fetch_failures: dict[tuple[str, str], float] = {}
        self.bundles: dict[str, Bundle] = {}
        self.search_error: dict[str, SearchError] = {}
        self.fetch_calls: list[tuple[str, str]] = []
        self.search_calls: list[tuple[str, dict[str, str], datetime | None]] = []

    def add(self, resource: dict) -> dict:
        self.resources[(resource["resourceType"], resource["id"])] = resource
        return resource

    async def ensure_authenticated(self) -> None:
        return None

    async def get_resource(self, resource_type: str, resource_id: str) -> dict:
        key = (resource_type, resource_id)
        self.fetch_calls.append(key)
        await self._enter()
        try:
            remaining = self.fetch_failures.get(key, 0)
            if remaining > 0:
                self.fetch_failures[key] = remaining - 1
                raise FetchError(f"Source read {resource_type}/{resource_id} failed: HTTP 503")
            if key not in self.resources:
                raise FetchError(
                    f"Source read {resource_type}/{resource_id} failed: HTTP 404",
                    status_code=404,
                )
            return dict(self.resources[key])
        finally:
            self._exit()

    async def search_resources(
        self,
        resource_type: str,
        params: dict[str, str] | None = None,
        *,
        last_updated_since: datetime | None = None,
    ) -> Bundle:
        params = dict(params or {})
        self.search_calls.append((resource_type, params, last_updated_since))
        if resource_type in self.search_error:
            raise self.search_error[resource_type]
        if resource_type in self.bundles:
            return self.bundles[resource_type]

        patient = params.get("patient")
        entries = []
        for (rtype, _), resource in self.resources.items():
            if rtype != resource_type:
                continue
            if patient is not None and resource.get("subject", {}).get("reference") != f"Patient/{patient}":
                continue
            entries.append({"resource": resource})
        return Bundle.from_json({"resourceType": "Bundle", "entry": entries})

    async def upsert_resource(self, resource: dict) -> dict:
        return self.add(dict(resource))


class InMemoryDestination(_Tracking):
    """Destination fake that stores upserts keyed by (resourceType, id).

    Attributes:
        push_failures: (type, id) → number of leading pushes that fail.
        push_calls:    Every (type, id) pushed, in order.
    """

    def __init__(self) -> None:
        super().__init__()
        self.resources: dict[tuple[str, str], dict] = {}
        self.push_failures: dict[tuple[str, str], float] = {}
        self.push_calls: list[tuple[str, str]] = []

    async def ensure_authenticated(self) -> None:
        return None

    async def get_resource(self, resource_type: str, resource_id: str) -> dict | None:
        return self.resources.get((resource_type, resource_id))

    async def search_resources(
        self,
        resource_type: str,
        params: dict[str, str] | None = None,
        *,
        last_updated_since: datetime | None = None,
    ) -> Bundle:
        entries = [
            {"resource": r} for (rtype, _), r in self.resources.items() if rtype == resource_type
        ]
        return Bundle.from_json({"entry": entries})

    async def upsert_resource(self, resource: dict) -> dict:
        key = (resource["resourceType"], resource["id"])
        self.push_calls.append(key)
        await self._enter()
        try:
            remaining = self.push_failures.get(key, 0)
            if remaining > 0:
                self.push_failures[key] = remaining - 1
                raise PushError(f"Destination write {key[0]}/{key[1]} failed: HTTP 500", 500)
            self.resources[key] = dict(resource)
            return dict(resource)
        finally:
            self._exit()


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def source() -> InMemorySource:
    return InMemorySource()


@pytest.fixture
def destination() -> InMemoryDestination:
    return InMemoryDestination()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def events() -> RecordingEvents:
    return RecordingEvents()


@pytest.fixture
def orchestrator(
    source: InMemorySource,
    destination: InMemoryDestination,
    sleep: RecordingSleep,
    events: RecordingEvents,
) -> SyncOrchestrator:
    return SyncOrchestrator(
        source, destination, retry_policy=RetryPolicy(), events=events, sleep=sleep
    )


def patient(patient_id: str) -> dict:
    return {"resourceType": "Patient", "id": patient_id}


def observation(observation_id: str, patient_id: str) -> dict:
    return {
        "resourceType": "Observation",
        "id": observation_id,
        "status": "final",
        "subject": {"reference": f"Patient/{patient_id}"},
    }
