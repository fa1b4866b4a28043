"""Source clinical-records client (OpenEMR-style FHIR R4 API).

Authentication is the OAuth2 client-credentials grant: a form-encoded POST to
the token endpoint returning ``{access_token, expires_in}``.

Settings:
    SOURCE_BASE_URL       — e.g. https://emr.example.org
    SOURCE_CLIENT_ID      — OAuth2 client ID
    SOURCE_CLIENT_SECRET  — OAuth2 client secret
    SOURCE_SCOPE          — requested scope (default ``api:fhir``)

Endpoints used:
    POST {base}/oauth2/default/token        — token exchange
    GET  {base}/apis/default/fhir/{type}/{id}
    GET  {base}/apis/default/fhir/{type}?…  — search
    GET  {base}/apis/default/fhir/metadata  — capability statement

Any non-2xx on a read is a ``FetchError``; a missing resource is not
distinguished from other failures here.
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

logger = logging.getLogger("fhir_sync.clients.source")


@dataclass(frozen=True)
class SourceConfig:
    """Connection settings for the source system.

    Values are not validated here; an empty base URL or bad credentials
    surface as ``AuthenticationError`` on first use.
    """

    base_url: str
    client_id: str
    client_secret: str
    scope: str = "api:fhir"
    token_path: str = "/oauth2/default/token"
    fhir_path: str = "/apis/default/fhir"

    @classmethod
    def from_settings(cls, settings: "Settings") -> "SourceConfig":
        return cls(
            base_url=settings.source_base_url,
            client_id=settings.source_client_id,
            client_secret=settings.source_client_secret,
            scope=settings.source_scope,
            token_path=settings.source_token_path,
            fhir_path=settings.source_fhir_path,
        )

    @property
    def token_url(self) -> str:
        return f"{self.base_url.rstrip('/')}{self.token_path}"

    @property
    def fhir_base(self) -> str:
        return f"{self.base_url.rstrip('/')}{self.fhir_path}"


class SourceClient:
    """Authenticated FHIR client for the source clinical-records system.

    Supports:
    - OAuth2 client-credentials grant with a cached, auto-refreshed token
    - Read by type + id, search with query params, capability statement
    - Update-or-create writes (same wire shape as the destination)
    """

    def __init__(
        self,
        config: SourceConfig,
        http_client: httpx.AsyncClient | None = None,
        clock: Clock = utc_now,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        """Initialize the source client.

        Args:
            config:      Endpoint and credential settings.
            http_client: Optional pre-configured httpx client (for testing or
                         pooling).  Not closed by ``aclose``.
            clock:       Returns the current UTC datetime.
            timeout:     Per-request transport timeout in seconds.
        """
        self._config = config
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient()
        self._clock = clock
        self._timeout = timeout
        self._tokens = TokenCache(self._exchange_credentials, clock=clock)

    async def __aenter__(self) -> "SourceClient":
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
        action = "Source authentication"
        logger.info("Source: requesting token from %s", self._config.token_url)
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
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
        payload = read_json(response, error_cls=AuthenticationError, action=action)
        token = token_from_payload(payload, self._clock(), AuthenticationError, action)
        logger.info("Source: authenticated, token valid until %s", token.expires_at)
        return token

    # ------------------------------------------------------------------
    # ResourceClient interface
    # ------------------------------------------------------------------

    async def get_resource(self, resource_type: str, resource_id: str) -> Resource:
        """Fetch ``{type}/{id}``.  Every failure, including 404, raises FetchError."""
        token = await self._tokens.get()
        action = f"Source read {resource_type}/{resource_id}"
        response = await send(
            self._http,
            "GET",
            f"{self._config.fhir_base}/{resource_type}/{resource_id}",
            error_cls=FetchError,
            action=action,
            timeout=self._timeout,
            headers=bearer_headers(token),
        )
        return read_json(response, error_cls=FetchError, action=action)

    async def search_resources(
        self,
        resource_type: str,
        params: dict[str, str] | None = None,
        *,
        last_updated_since: datetime | None = None,
    ) -> Bundle:
        """Search ``{type}`` with the given query params.

        Args:
            resource_type:      FHIR resource type, e.g. "Patient".
            params:             Search parameters passed through verbatim.
            last_updated_since: Optional lower bound sent as ``_lastUpdated=ge…``.

        Returns:
            Bundle, possibly with zero entries.
        """
        token = await self._tokens.get()
        action = f"Source search {resource_type}"
        query = search_query(params, last_updated_since)
        logger.debug("Source: searching %s with %s", resource_type, query)
        response = await send(
            self._http,
            "GET",
            f"{self._config.fhir_base}/{resource_type}",
            error_cls=SearchError,
            action=action,
            timeout=self._timeout,
            params=query,
            headers=bearer_headers(token),
        )
        data = read_json(response, error_cls=SearchError, action=action)
        if not isinstance(data, dict):
            raise SearchError(f"{action} failed: response is not a Bundle")
        return Bundle.from_json(data)

    async def upsert_resource(self, resource: Resource) -> Resource:
        """PUT by id when present, otherwise POST and let the server assign one."""
        token = await self._tokens.get()
        resource_type = resource.get("resourceType")
        if not resource_type:
            raise PushError("Source write failed: resource has no resourceType")
        resource_id = resource.get("id")
        action = f"Source write {resource_type}/{resource_id or '(new)'}"
        url = f"{self._config.fhir_base}/{resource_type}"
        response = await send(
            self._http,
            "PUT" if resource_id else "POST",
            f"{url}/{resource_id}" if resource_id else url,
            error_cls=PushError,
            action=action,
            timeout=self._timeout,
            content=json.dumps(resource),
            headers=bearer_headers(token, content=True),
        )
        if not response.content:
            return dict(resource)
        return read_json(response, error_cls=PushError, action=action)

    # ------------------------------------------------------------------
    # Extras
    # ------------------------------------------------------------------

    async def get_capability_statement(self) -> Resource:
        """Return the server's CapabilityStatement (``GET {fhir}/metadata``)."""
        token = await self._tokens.get()
        action = "Source capability statement"
        response = await send(
            self._http,
            "GET",
            f"{self._config.fhir_base}/metadata",
            error_cls=FetchError,
            action=action,
            timeout=self._timeout,
            headers=bearer_headers(token),
        )
        return read_json(response, error_cls=FetchError, action=action)
