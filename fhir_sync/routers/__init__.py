"""HTTP routers for the fhir-sync API."""
