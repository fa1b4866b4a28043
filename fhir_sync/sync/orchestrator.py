"""Fetch-then-push orchestration from the source to the destination.

Per resource the flow is::

    Pending → Fetching ─┬─ Fetched → Pushing ─┬─ Pushed      (success)
                        │                     └─ PushFailed  (failure)
                        └─ FetchFailed                       (failure)

Both the fetch and the push are wrapped in ``retry``.  ``sync_resource``
never raises; every failure becomes a ``SyncResult`` with ``success=False``.
Searches are not retried and their failures propagate, since a batch has no
meaningful partial result without its resource list.

Usage::

    orchestrator = SyncOrchestrator(source_client, destination_client)
    cascade = await orchestrator.sync_patient_with_dependents("1")
    logger.info("Synced: %s", cascade.summary)
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Sequence, TypeVar

from fhir_sync.clients.base import ResourceClient
from fhir_sync.errors import FetchError
from fhir_sync.observability import LoggingSyncEvents, SyncEvents
from fhir_sync.sync.retry import RetryPolicy, Sleep, retry

logger = logging.getLogger("fhir_sync.sync.orchestrator")

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SyncResult:
    """Outcome of one resource sync attempt.

    Attributes:
        success:       True when the resource was fetched and written.
        resource_type: The requested resource type, echoed verbatim.
        resource_id:   The requested resource id, echoed verbatim.
        error:         Failure message; None on success.
    """

    success: bool
    resource_type: str
    resource_id: str
    error: str | None = None

    def to_json(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "success": self.success,
            "resourceType": self.resource_type,
            "resourceId": self.resource_id,
        }
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass(frozen=True)
class SyncSummary:
    """Counts over a list of results.  ``succeeded + failed == total``."""

    total: int = 0
    succeeded: int = 0
    failed: int = 0

    @classmethod
    def from_results(cls, results: Sequence[SyncResult]) -> "SyncSummary":
        succeeded = sum(1 for r in results if r.success)
        return cls(total=len(results), succeeded=succeeded, failed=len(results) - succeeded)

    def to_json(self) -> dict[str, int]:
        return {"total": self.total, "succeeded": self.succeeded, "failed": self.failed}


@dataclass(frozen=True)
class CascadeResult:
    """A patient sync followed by its dependents; the patient result is first."""

    results: list[SyncResult] = field(default_factory=list)
    summary: SyncSummary = field(default_factory=SyncSummary)


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class SyncOrchestrator:
    """Compose two ``ResourceClient`` instances into sync operations.

    The orchestrator is protocol-agnostic: it only calls ``get_resource`` and
    ``search_resources`` on the source and ``upsert_resource`` on the
    destination.
    """

    def __init__(
        self,
        source: ResourceClient,
        destination: ResourceClient,
        *,
        retry_policy: RetryPolicy | None = None,
        concurrency: int = 1,
        events: SyncEvents | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            source:       Client resources are read from.
            destination:  Client resources are written to.
            retry_policy: Attempts and backoff for every fetch and push.
            concurrency:  Maximum resources in flight during bulk sync.
                          1 (default) means strictly sequential.
            events:       Structured event sink; defaults to logging.
            sleep:        Backoff sleep, injectable for tests.
        """
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self._source = source
        self._destination = destination
        self._retry_policy = retry_policy or RetryPolicy()
        self._concurrency = concurrency
        self._events = events or LoggingSyncEvents()
        self._sleep = sleep

    async def _retried(self, operation: Callable[[], Awaitable[T]], name: str) -> T:
        policy = self._retry_policy
        return await retry(
            operation,
            name,
            policy.max_attempts,
            policy.base_delay,
            policy.backoff_factor,
            sleep=self._sleep,
            events=self._events,
        )

    # ------------------------------------------------------------------
    # Single resource
    # ------------------------------------------------------------------

    async def sync_resource(self, resource_type: str, resource_id: str) -> SyncResult:
        """Fetch one resource from the source and write it to the destination.

        Never raises: any failure surfaced by either retried call is returned
        as a failed ``SyncResult``.
        """
        ref = f"{resource_type}/{resource_id}"
        self._events.emit("sync.started", resource=ref)
        try:
            resource = await self._retried(
                lambda: self._source.get_resource(resource_type, resource_id),
                f"Fetch {ref} from source",
            )
            if resource is None:
                raise FetchError(f"Source returned no content for {ref}")
            self._events.emit("sync.fetched", resource=ref)

            await self._retried(
                lambda: self._destination.upsert_resource(resource),
                f"Push {ref} to destination",
            )
        except Exception as exc:
            message = str(exc) or exc.__class__.__name__
            self._events.emit("sync.failed", resource=ref, error=message)
            return SyncResult(
                success=False,
                resource_type=resource_type,
                resource_id=resource_id,
                error=message,
            )

        self._events.emit("sync.succeeded", resource=ref)
        return SyncResult(success=True, resource_type=resource_type, resource_id=resource_id)

    # ------------------------------------------------------------------
    # Batches
    # ------------------------------------------------------------------

    async def sync_resources_bulk(
        self,
        resource_type: str,
        params: dict[str, str] | None = None,
        *,
        last_updated_since: datetime | None = None,
    ) -> list[SyncResult]:
        """Search the source once and sync every entry that carries an id.

        Results are returned in Bundle entry order regardless of the
        concurrency limit.  Entries without an id are skipped silently.

        Raises:
            SearchError: If the search fails; no resource is synced.
        """
        bundle = await self._source.search_resources(
            resource_type, params or {}, last_updated_since=last_updated_since
        )
        ids = [
            str(resource["id"])
            for resource in bundle.resources()
            if resource is not None and resource.get("id")
        ]
        if len(ids) < len(bundle):
            logger.debug(
                "Skipping %d %s entries without an id", len(bundle) - len(ids), resource_type
            )
        self._events.emit(
            "bulk.searched",
            resource_type=resource_type,
            entries=len(bundle),
            eligible=len(ids),
        )

        if self._concurrency == 1:
            results = [await self.sync_resource(resource_type, rid) for rid in ids]
        else:
            semaphore = asyncio.Semaphore(self._concurrency)

            async def _bounded(rid: str) -> SyncResult:
                async with semaphore:
                    return await self.sync_resource(resource_type, rid)

            results = list(await asyncio.gather(*(_bounded(rid) for rid in ids)))

        summary = SyncSummary.from_results(results)
        self._events.emit(
            "bulk.completed",
            resource_type=resource_type,
            succeeded=summary.succeeded,
            failed=summary.failed,
        )
        return results

    async def sync_patient_with_dependents(self, patient_id: str) -> CascadeResult:
        """Sync ``Patient/{id}`` and then every Observation referencing it.

        The patient result is always first, whether or not it succeeded.

        Raises:
            SearchError: If the Observation search fails.
        """
        patient_result = await self.sync_resource("Patient", patient_id)
        observation_results = await self.sync_resources_bulk(
            "Observation", {"patient": patient_id}
        )
        results = [patient_result, *observation_results]
        summary = SyncSummary.from_results(results)
        self._events.emit(
            "cascade.completed",
            patient=patient_id,
            total=summary.total,
            succeeded=summary.succeeded,
            failed=summary.failed,
        )
        return CascadeResult(results=results, summary=summary)
