"""Error taxonomy for the FHIR sync engine.

Clients translate transport failures, non-2xx responses and malformed bodies
into one of these types.  ``SyncOrchestrator.sync_resource`` converts
Authentication / Fetch / Push failures into failed ``SyncResult`` values;
``SearchError`` always propagates to the caller.
"""

from __future__ import annotations


class FHIRSyncError(Exception):
    """Base class for every error raised by the sync engine.

    Attributes:
        status_code: HTTP status of the failing response, or None when the
                     request never produced one (timeout, connection reset).
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AuthenticationError(FHIRSyncError):
    """The credential exchange with a token endpoint failed."""


class FetchError(FHIRSyncError):
    """Reading a resource failed."""


class PushError(FHIRSyncError):
    """Writing a resource to the destination failed."""


class SearchError(FHIRSyncError):
    """Listing resources failed.  Never retried; aborts the whole batch."""
