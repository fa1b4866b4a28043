"""Authenticated FHIR clients.

Each client satisfies the ``ResourceClient`` protocol and handles:
- Credential exchange with a cached, auto-refreshed bearer token
- Reading, searching and writing FHIR resources as opaque JSON documents
- Translating transport and HTTP failures into the fhir_sync error taxonomy

Available clients:
    SourceClient      — OpenEMR-style API (OAuth2 client credentials)
    DestinationClient — Azure Health Data Services (Azure AD client credentials)
"""

from fhir_sync.clients.base import AccessToken, Bundle, Resource, ResourceClient, TokenCache
from fhir_sync.clients.destination import DestinationClient, DestinationConfig
from fhir_sync.clients.source import SourceClient, SourceConfig

__all__ = [
    "AccessToken",
    "Bundle",
    "Resource",
    "ResourceClient",
    "TokenCache",
    "SourceClient",
    "SourceConfig",
    "DestinationClient",
    "DestinationConfig",
]
