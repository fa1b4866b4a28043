"""Shared fixtures and a fake FHIR server for client tests."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs

import httpx
import pytest

from fhir_sync.clients.destination import DestinationClient, DestinationConfig
from fhir_sync.clients.source import SourceClient, SourceConfig

SOURCE_BASE_URL = "https://emr.test"
DESTINATION_ENDPOINT = "https://fhir.test"
TENANT_ID = "tenant-1"
START_TIME = datetime(2026, 2, 23, 12, 0, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, now: datetime = START_TIME) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


# ---------------------------------------------------------------------------
# Fake FHIR server
# ---------------------------------------------------------------------------


class FakeFHIRServer:
    """In-memory FHIR endpoint plus token endpoint, served via httpx.MockTransport.

    Attributes:
        resources:       Stored resources keyed by (resourceType, id).
        token_requests:  Every request that hit the token endpoint.
        requests:        Every request, in order.
        status_overrides: path → status code returned instead of normal handling.
        token_status:    Status code returned by the token endpoint.
        expires_in:      Lifetime advertised for issued tokens.
    """

    def __init__(self, token_path: str, fhir_path: str = "") -> None:
        self.token_path = token_path
        self.fhir_path = fhir_path.rstrip("/")
        self.resources: dict[tuple[str, str], dict] = {}
        self.token_requests: list[httpx.Request] = []
        self.requests: list[httpx.Request] = []
        self.status_overrides: dict[str, int] = {}
        self.token_status = 200
        self.expires_in = 3600
        self._issued = 0
        self._next_id = 1000

    def add(self, resource: dict) -> dict:
        self.resources[(resource["resourceType"], resource["id"])] = resource
        return resource

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self.transport())

    def token_form(self, index: int = -1) -> dict[str, str]:
        body = self.token_requests[index].content.decode()
        return {k: v[0] for k, v in parse_qs(body).items()}

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path == self.token_path:
            self.token_requests.append(request)
            if self.token_status != 200:
                return httpx.Response(self.token_status, json={"error": "invalid_client"})
            self._issued += 1
            return httpx.Response(
                200,
                json={"access_token": f"token-{self._issued}", "expires_in": self.expires_in},
            )

        if path in self.status_overrides:
            return httpx.Response(
                self.status_overrides[path],
                json={"resourceType": "OperationOutcome"},
            )

        parts = [p for p in path[len(self.fhir_path):].split("/") if p]

        if request.method == "GET" and parts == ["metadata"]:
            return httpx.Response(
                200,
                json={
                    "resourceType": "CapabilityStatement",
                    "fhirVersion": "4.0.1",
                    "software": {"name": "Fake FHIR"},
                },
            )
        if request.method == "GET" and len(parts) == 2:
            resource = self.resources.get((parts[0], parts[1]))
            if resource is None:
                return httpx.Response(404, json={"resourceType": "OperationOutcome"})
            return httpx.Response(200, json=resource)
        if request.method == "GET" and len(parts) == 1:
            return httpx.Response(200, json=self._search(parts[0], request))
        if request.method == "PUT" and len(parts) == 2:
            resource = json.loads(request.content)
            resource["id"] = parts[1]
            created = (parts[0], parts[1]) not in self.resources
            self.add(resource)
            return httpx.Response(201 if created else 200, json=resource)
        if request.method == "POST" and len(parts) == 1:
            resource = json.loads(request.content)
            self._next_id += 1
            resource["id"] = str(self._next_id)
            self.add(resource)
            return httpx.Response(201, json=resource)

        return httpx.Response(400, json={"resourceType": "OperationOutcome"})

    def _search(self, resource_type: str, request: httpx.Request) -> dict:
        patient = request.url.params.get("patient")
        entries = []
        for (rtype, _), resource in self.resources.items():
            if rtype != resource_type:
                continue
            if patient is not None:
                reference = resource.get("subject", {}).get("reference")
                if reference != f"Patient/{patient}":
                    continue
            entries.append({"resource": resource})
        bundle: dict = {"resourceType": "Bundle", "type": "searchset", "total": len(entries)}
        if entries:
            bundle["entry"] = entries
        return bundle


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def source_config() -> SourceConfig:
    return SourceConfig(
        base_url=SOURCE_BASE_URL,
        client_id="emr-client",
        client_secret="emr-secret",
    )


@pytest.fixture
def destination_config() -> DestinationConfig:
    return DestinationConfig(
        fhir_endpoint=DESTINATION_ENDPOINT,
        tenant_id=TENANT_ID,
        client_id="ahds-client",
        client_secret="ahds-secret",
    )


@pytest.fixture
def source_server() -> FakeFHIRServer:
    return FakeFHIRServer(token_path="/oauth2/default/token", fhir_path="/apis/default/fhir")


@pytest.fixture
def destination_server() -> FakeFHIRServer:
    return FakeFHIRServer(token_path=f"/{TENANT_ID}/oauth2/v2.0/token")


@pytest.fixture
def source_client(
    source_config: SourceConfig, source_server: FakeFHIRServer, clock: FakeClock
) -> SourceClient:
    return SourceClient(source_config, http_client=source_server.http_client(), clock=clock)


@pytest.fixture
def destination_client(
    destination_config: DestinationConfig,
    destination_server: FakeFHIRServer,
    clock: FakeClock,
) -> DestinationClient:
    return DestinationClient(
        destination_config, http_client=destination_server.http_client(), clock=clock
    )


def patient(patient_id: str) -> dict:
    return {
        "resourceType": "Patient",
        "id": patient_id,
        "name": [{"family": "Rivera", "given": ["Ana"]}],
    }


def observation(observation_id: str, patient_id: str) -> dict:
    return {
        "resourceType": "Observation",
        "id": observation_id,
        "status": "final",
        "code": {"coding": [{"system": "http://loinc.org", "code": "8867-4"}]},
        "subject": {"reference": f"Patient/{patient_id}"},
        "valueQuantity": {"value": 72, "unit": "beats/minute"},
    }
