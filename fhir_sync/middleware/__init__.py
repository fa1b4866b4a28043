"""ASGI middleware for the fhir-sync API."""
