"""fhir-sync: one-way FHIR resource synchronization.

Moves clinical resources (patients, observations, any FHIR type) from a source
clinical-records system to a destination clinical-data store, tolerating
transient failures and reporting success or failure per resource.

Subpackages:
    clients/    — Authenticated source and destination FHIR clients
    sync/       — Retry executor, orchestrator, scheduled trigger
    routers/    — On-demand HTTP handlers and health checks
    models/     — Request / response schemas
    middleware/ — Function-key authentication
"""

__version__ = "0.1.0"
