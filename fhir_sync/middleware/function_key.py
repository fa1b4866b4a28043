"""Function-key authentication middleware for FastAPI.

On-demand sync handlers are protected by a shared key, sent either as the
``x-functions-key`` header or the ``code`` query parameter.  When no key is
configured the check is disabled (local development).
"""

from __future__ import annotations

import hmac
import logging
from typing import Any

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from fhir_sync.config import Settings, get_settings

logger = logging.getLogger("fhir_sync.auth")

# Paths that do not require a function key
PUBLIC_PATHS: set[str] = {
    "/health",
    "/docs",
    "/openapi.json",
    "/redoc",
}


def _is_public(path: str) -> bool:
    return path in PUBLIC_PATHS or path.startswith("/docs") or path.startswith("/redoc")


class FunctionKeyMiddleware(BaseHTTPMiddleware):
    """Reject requests that do not present the configured function key."""

    def __init__(self, app: Any, settings: Settings | None = None) -> None:
        super().__init__(app)
        self._settings = settings or get_settings()

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        expected = self._settings.function_key
        if not expected or _is_public(request.url.path):
            return await call_next(request)

        presented = request.headers.get("x-functions-key") or request.query_params.get("code")
        if not presented:
            return Response(
                content='{"error":"Missing function key"}',
                status_code=401,
                media_type="application/json",
            )

        if not hmac.compare_digest(presented.encode(), expected.encode()):
            logger.warning("Rejected request to %s: invalid function key", request.url.path)
            return Response(
                content='{"error":"Invalid function key"}',
                status_code=401,
                media_type="application/json",
            )

        return await call_next(request)
