"""Sync engine for fhir_sync.

Modules:
    retry        — Bounded retry with exponential backoff
    orchestrator — Single-resource, bulk and cascading fetch→push sync
    scheduler    — Scheduled trigger (patients, then their observations)
"""

from fhir_sync.sync.orchestrator import CascadeResult, SyncOrchestrator, SyncResult, SyncSummary
from fhir_sync.sync.retry import RetryPolicy, retry

__all__ = [
    "CascadeResult",
    "RetryPolicy",
    "SyncOrchestrator",
    "SyncResult",
    "SyncSummary",
    "retry",
]
