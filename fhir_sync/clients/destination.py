"""Destination clinical-data store client (Azure Health Data Services FHIR).

Authentication is the Azure AD client-credential grant, scoped to
``{fhir_endpoint}/.default``:

    POST {authority_host}/{tenant_id}/oauth2/v2.0/token
         grant_type=client_credentials&client_id=…&client_secret=…&scope=…

Settings:
    DESTINATION_FHIR_ENDPOINT   — e.g. https://ws-fhir.fhir.azurehealthcareapis.com
    DESTINATION_TENANT_ID       — Azure AD tenant
    DESTINATION_CLIENT_ID       — app registration client ID
    DESTINATION_CLIENT_SECRET   — app registration secret

Unlike the source, a 404 on read is not an error: ``get_resource`` returns
None so callers can probe for existence.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any

import httpx

from fhir_sync.clients.base import (
    DEFAULT_TIMEOUT_SECONDS,
    AccessToken,
    Bundle,
    Clock,
    Resource,
    TokenCache,
    bearer_headers,
    read_json,
    search_query,
    send,
    token_from_payload,
    utc_now,
)
from fhir_sync.errors import AuthenticationError, FetchError, PushError, SearchError

if TYPE_CHECKING:
    from fhir_sync.config import Settings

logger = logging.getLogger("fhir_sync.clients.destination")

_AZURE_AUTHORITY_HOST = "https://login.microsoftonline.com"


@dataclass(frozen=True)
class DestinationConfig:
    """Connection settings for the destination FHIR service."""

    fhir_endpoint: str
    tenant_id: str
    client_id: str
    client_secret: str
    authority_host: str = _AZURE_AUTHORITY_HOST

    @classmethod
    def from_settings(cls, settings: "Settings") -> "DestinationConfig":
        return cls(
            fhir_endpoint=settings.destination_fhir_endpoint,
            tenant_id=settings.destination_tenant_id,
            client_id=settings.destination_client_id,
            client_secret=settings.destination_client_secret,
            authority_host=settings.destination_authority_host,
        )

    @property
    def base_url(self) -> str:
        return self.fhir_endpoint.rstrip("/")

    @property
    def token_url(self) -> str:
        return f"{self.authority_host.rstrip('/')}/{self.tenant_id}/oauth2/v2.0/token"

    @property
    def scope(self) -> str:
        return f"{self.base_url}/.default"


class DestinationClient:
    """Authenticated FHIR client for the destination data store."""

    def __init__(
        self,
        config: DestinationConfig,
        http_client: httpx.AsyncClient | None = None,
        clock: Clock = utc_now,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self._config = config
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient()
        self._clock = clock
        self._timeout = timeout
        self._tokens = TokenCache(self._exchange_credentials, clock=clock)

    async def __aenter__(self) -> "DestinationClient":
        return self

    async def __aexit__(self, *_: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    @property
    def token(self) -> AccessToken | None:
        return self._tokens.token

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    async def ensure_authenticated(self) -> None:
        await self._tokens.get()

    async def _exchange_credentials(self) -> AccessToken:
        action = "Destination authentication"
        logger.info("Destination: requesting token for scope %s", self._config.scope)
        response = await send(
            self._http,
            "POST",
            self._config.token_url,
            error_cls=AuthenticationError,
            action=action,
            timeout=self._timeout,
            data={
                "grant_type": "client_credentials",
                "client_id": self._config.client_id,
                "client_secret": self._config.client_secret,
                "scope": self._config.scope,
            },
        )
        payload = read_json(response, error_cls=AuthenticationError, action=action)
        token = token_from_payload(payload, self._clock(), AuthenticationError, action)
        logger.info("Destination: authenticated, token valid until %s", token.expires_at)
        return token

    # ------------------------------------------------------------------
    # ResourceClient interface
    # ------------------------------------------------------------------

    async def get_resource(self, resource_type: str, resource_id: str) -> Resource | None:
        """Fetch ``{type}/{id}``; returns None when the store answers 404."""
        token = await self._tokens.get()
        action = f"Destination read {resource_type}/{resource_id}"
        response = await send(
            self._http,
            "GET",
            f"{self._config.base_url}/{resource_type}/{resource_id}",
            error_cls=FetchError,
            action=action,
            timeout=self._timeout,
            allow_status=(404,),
            headers=bearer_headers(token),
        )
        if response.status_code == 404:
            return None
        return read_json(response, error_cls=FetchError, action=action)

    async def search_resources(
        self,
        resource_type: str,
        params: dict[str, str] | None = None,
        *,
        last_updated_since: datetime | None = None,
    ) -> Bundle:
        token = await self._tokens.get()
        action = f"Destination search {resource_type}"
        response = await send(
            self._http,
            "GET",
            f"{self._config.base_url}/{resource_type}",
            error_cls=SearchError,
            action=action,
            timeout=self._timeout,
            params=search_query(params, last_updated_since),
            headers=bearer_headers(token),
        )
        data = read_json(response, error_cls=SearchError, action=action)
        if not isinstance(data, dict):
            raise SearchError(f"{action} failed: response is not a Bundle")
        return Bundle.from_json(data)

    async def upsert_resource(self, resource: Resource) -> Resource:
        """Write a resource and return it as stored.

        With an ``id`` this is a PUT to ``{type}/{id}`` (update-or-create at
        exactly that id, so repeating it never duplicates).  Without one it is
        a POST to ``{type}`` and the server assigns the id.

        Raises:
            PushError: on transport failure or any non-2xx response.
        """
        token = await self._tokens.get()
        resource_type = resource.get("resourceType")
        if not resource_type:
            raise PushError("Destination write failed: resource has no resourceType")
        resource_id = resource.get("id")
        action = f"Destination write {resource_type}/{resource_id or '(new)'}"

        if resource_id:
            method, url = "PUT", f"{self._config.base_url}/{resource_type}/{resource_id}"
        else:
            method, url = "POST", f"{self._config.base_url}/{resource_type}"

        response = await send(
            self._http,
            method,
            url,
            error_cls=PushError,
            action=action,
            timeout=self._timeout,
            content=json.dumps(resource),
            headers=bearer_headers(token, content=True),
        )
        if not response.content:
            return dict(resource)
        stored = read_json(response, error_cls=PushError, action=action)
        if not isinstance(stored, dict):
            raise PushError(
                f"{action} failed: response is not a resource",
                status_code=response.status_code,
            )
        logger.debug(
            "Destination: stored %s/%s", resource_type, stored.get("id", resource_id)
        )
        return stored
