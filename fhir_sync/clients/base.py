"""Shared types and helpers for the authenticated FHIR clients.

Both ``SourceClient`` and ``DestinationClient`` satisfy the ``ResourceClient``
protocol.  They share no base class: token caching is composed in through
``TokenCache`` and the request plumbing through ``send`` / ``read_json``, so
the orchestrator only ever depends on the protocol.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Iterator, Protocol

import httpx

from fhir_sync.errors import FHIRSyncError

logger = logging.getLogger("fhir_sync.clients")

FHIR_JSON = "application/fhir+json"

#: Transport timeout applied to every request (seconds).
DEFAULT_TIMEOUT_SECONDS = 30.0

#: A cached token is refreshed this long before it actually expires.
TOKEN_SAFETY_MARGIN = timedelta(seconds=60)

#: Used when a token endpoint omits ``expires_in``.
DEFAULT_TOKEN_LIFETIME_SECONDS = 3600

Resource = dict[str, Any]
Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Tokens
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AccessToken:
    """Bearer credential returned by a token endpoint.

    Attributes:
        value:      The bearer token string.
        expires_at: UTC datetime when the token stops being accepted.
    """

    value: str
    expires_at: datetime

    def is_usable(
        self, now: datetime, safety_margin: timedelta = TOKEN_SAFETY_MARGIN
    ) -> bool:
        return now < self.expires_at - safety_margin


class TokenCache:
    """Hold one ``AccessToken`` and refresh it through ``exchange`` when stale.

    The refresh is single-flight: concurrent callers wait on one exchange
    instead of each re-authenticating.  A failed exchange leaves the previous
    token in place and propagates the error.

    Args:
        exchange:      Async callable performing the credential exchange.
        clock:         Returns the current UTC datetime.
        safety_margin: Refresh this long before ``expires_at``.
    """

    def __init__(
        self,
        exchange: Callable[[], Awaitable[AccessToken]],
        clock: Clock = utc_now,
        safety_margin: timedelta = TOKEN_SAFETY_MARGIN,
    ) -> None:
        self._exchange = exchange
        self._clock = clock
        self._safety_margin = safety_margin
        self._token: AccessToken | None = None
        self._lock = asyncio.Lock()

    @property
    def token(self) -> AccessToken | None:
        return self._token

    def is_valid(self) -> bool:
        return self._token is not None and self._token.is_usable(
            self._clock(), self._safety_margin
        )

    async def get(self) -> str:
        """Return a usable bearer token, exchanging credentials if needed."""
        token = self._token
        if token is None or not token.is_usable(self._clock(), self._safety_margin):
            async with self._lock:
                # Another caller may have refreshed while we waited.
                token = self._token
                if token is None or not token.is_usable(self._clock(), self._safety_margin):
                    token = await self._exchange()
                    self._token = token
        return token.value


def token_from_payload(
    payload: Any, now: datetime, error_cls: type[FHIRSyncError], action: str
) -> AccessToken:
    """Build an ``AccessToken`` from an OAuth2 token response body.

    Honours ``expires_on`` (epoch seconds, Azure AD) when present, otherwise
    ``expires_in`` relative to ``now``.
    """
    if not isinstance(payload, dict) or not payload.get("access_token"):
        raise error_cls(f"{action} failed: token response has no access_token")

    expires_on = payload.get("expires_on")
    try:
        if expires_on is not None:
            expires_at = datetime.fromtimestamp(int(expires_on), tz=timezone.utc)
        else:
            expires_in = int(payload.get("expires_in", DEFAULT_TOKEN_LIFETIME_SECONDS))
            expires_at = now + timedelta(seconds=expires_in)
    except (TypeError, ValueError) as exc:
        raise error_cls(f"{action} failed: invalid token expiry ({exc})") from exc

    return AccessToken(value=str(payload["access_token"]), expires_at=expires_at)


# ---------------------------------------------------------------------------
# Bundles
# ---------------------------------------------------------------------------


@dataclass
class Bundle:
    """A FHIR search result.

    Attributes:
        entries: Ordered ``entry`` objects; each may wrap a ``resource``.
        raw:     The full response body, unmodified.
    """

    entries: list[dict] = field(default_factory=list)
    raw: dict = field(default_factory=dict)

    @classmethod
    def from_json(cls, data: dict) -> "Bundle":
        entries = data.get("entry") or []
        return cls(entries=[e for e in entries if isinstance(e, dict)], raw=data)

    def resources(self) -> Iterator[Resource | None]:
        """Yield the resource wrapped by each entry (None for empty entries)."""
        for entry in self.entries:
            resource = entry.get("resource")
            yield resource if isinstance(resource, dict) else None

    def __len__(self) -> int:
        return len(self.entries)


# ---------------------------------------------------------------------------
# Capability protocol
# ---------------------------------------------------------------------------


class ResourceClient(Protocol):
    """Authenticated read/search/write access to one FHIR endpoint."""

    async def ensure_authenticated(self) -> None: ...

    async def get_resource(self, resource_type: str, resource_id: str) -> Resource | None: ...

    async def search_resources(
        self,
        resource_type: str,
        params: dict[str, str] | None = None,
        *,
        last_updated_since: datetime | None = None,
    ) -> Bundle: ...

    async def upsert_resource(self, resource: Resource) -> Resource: ...


# ---------------------------------------------------------------------------
# Request plumbing
# ---------------------------------------------------------------------------


def bearer_headers(token: str, *, content: bool = False) -> dict[str, str]:
    headers = {"Authorization": f"Bearer {token}", "Accept": FHIR_JSON}
    if content:
        headers["Content-Type"] = FHIR_JSON
    return headers


def search_query(
    params: dict[str, str] | None, last_updated_since: datetime | None
) -> dict[str, str]:
    """Merge caller params with the optional ``_lastUpdated`` lower bound."""
    query = dict(params or {})
    if last_updated_since is not None:
        query["_lastUpdated"] = f"ge{last_updated_since.isoformat()}"
    return query


def _describe_exception(exc: Exception) -> str:
    return str(exc) or exc.__class__.__name__


def _describe_response(response: httpx.Response) -> str:
    body = response.text[:500] if response.content else ""
    reason = response.reason_phrase or "error"
    return f"HTTP {response.status_code} {reason}" + (f": {body}" if body else "")


async def send(
    http: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    error_cls: type[FHIRSyncError],
    action: str,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
    allow_status: tuple[int, ...] = (),
    **kwargs: Any,
) -> httpx.Response:
    """Issue one request, translating every failure into ``error_cls``.

    Transport errors (including timeouts) and non-2xx responses both raise.
    Status codes listed in ``allow_status`` are returned to the caller.
    """
    try:
        response = await http.request(method, url, timeout=timeout, **kwargs)
    except (httpx.HTTPError, httpx.InvalidURL) as exc:
        logger.debug("%s: transport failure %r", action, exc)
        raise error_cls(f"{action} failed: {_describe_exception(exc)}") from exc

    if response.is_success or response.status_code in allow_status:
        return response

    raise error_cls(
        f"{action} failed: {_describe_response(response)}",
        status_code=response.status_code,
    )


def read_json(
    response: httpx.Response, *, error_cls: type[FHIRSyncError], action: str
) -> Any:
    try:
        return response.json()
    except ValueError as exc:
        raise error_cls(
            f"{action} failed: response body is not valid JSON",
            status_code=response.status_code,
        ) from exc
