"""Scheduled sync trigger.

Each run:
1. Sync every Patient the source returns (optionally filtered by
   ``_lastUpdated``)
2. For each patient that synced successfully, sync its Observations
3. Report per-resource results and a summary

A failed Patient search fails the whole run.  A failed Observation search
only affects that patient and is recorded in the report.  There is no retry
queue: anything that failed is picked up again by a later run if the source
still returns it.

Usage::

    scheduler = AutoSyncScheduler(
        orchestrator_factory=lambda: orchestrator_session(settings),
        interval_seconds=60,
    )
    scheduler.start()
    ...
    await scheduler.stop()
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, AsyncContextManager, Callable

from fhir_sync.clients.base import Clock, utc_now
from fhir_sync.sync.orchestrator import SyncOrchestrator, SyncResult, SyncSummary

logger = logging.getLogger("fhir_sync.sync.scheduler")

#: Default interval between scheduled runs (seconds).
DEFAULT_INTERVAL_SECONDS = 60

OrchestratorFactory = Callable[[], AsyncContextManager[SyncOrchestrator]]


@dataclass
class AutoSyncReport:
    """Outcome of one scheduled run.

    Attributes:
        patient_results:     One result per patient with an id, in search order.
        observation_results: Observation results keyed by patient id.
        observation_errors:  Observation search failures keyed by patient id.
        started_at:          UTC start of the run.
        finished_at:         UTC end of the run.
    """

    patient_results: list[SyncResult] = field(default_factory=list)
    observation_results: dict[str, list[SyncResult]] = field(default_factory=dict)
    observation_errors: dict[str, str] = field(default_factory=dict)
    started_at: datetime = field(default_factory=utc_now)
    finished_at: datetime | None = None

    @property
    def all_results(self) -> list[SyncResult]:
        results = list(self.patient_results)
        for obs in self.observation_results.values():
            results.extend(obs)
        return results

    @property
    def summary(self) -> SyncSummary:
        return SyncSummary.from_results(self.all_results)

    def to_json(self) -> dict[str, Any]:
        return {
            "patients": [r.to_json() for r in self.patient_results],
            "observations": {
                pid: [r.to_json() for r in results]
                for pid, results in self.observation_results.items()
            },
            "observationErrors": dict(self.observation_errors),
            "summary": self.summary.to_json(),
            "startedAt": self.started_at.isoformat(),
            "finishedAt": self.finished_at.isoformat() if self.finished_at else None,
        }


async def run_auto_sync(
    orchestrator: SyncOrchestrator,
    *,
    last_updated_since: datetime | None = None,
    clock: Clock = utc_now,
) -> AutoSyncReport:
    """Run one pass: all patients, then the observations of each synced patient.

    Raises:
        SearchError: If the Patient search fails.
    """
    report = AutoSyncReport(started_at=clock())

    report.patient_results = await orchestrator.sync_resources_bulk(
        "Patient", {}, last_updated_since=last_updated_since
    )
    patients = SyncSummary.from_results(report.patient_results)
    logger.info(
        "Auto-sync patients: %d succeeded, %d failed", patients.succeeded, patients.failed
    )

    for result in report.patient_results:
        if not result.success:
            continue
        patient_id = result.resource_id
        try:
            obs_results = await orchestrator.sync_resources_bulk(
                "Observation", {"patient": patient_id}
            )
        except Exception as exc:
            logger.error(
                "Auto-sync observations failed for Patient/%s: %s", patient_id, exc
            )
            report.observation_errors[patient_id] = str(exc) or exc.__class__.__name__
            continue

        report.observation_results[patient_id] = obs_results
        obs = SyncSummary.from_results(obs_results)
        logger.info(
            "Synced observations for Patient/%s: %d succeeded, %d failed",
            patient_id, obs.succeeded, obs.failed,
        )

    report.finished_at = clock()
    summary = report.summary
    logger.info(
        "Auto-sync complete: %d resources, %d succeeded, %d failed",
        summary.total, summary.succeeded, summary.failed,
    )
    return report


class AutoSyncScheduler:
    """Run ``run_auto_sync`` on a fixed interval in a background task.

    Every run gets a fresh orchestrator (and so fresh clients and tokens)
    from ``orchestrator_factory``; failures are logged and the loop keeps
    going until ``stop()``.
    """

    def __init__(
        self,
        orchestrator_factory: OrchestratorFactory,
        interval_seconds: int = DEFAULT_INTERVAL_SECONDS,
        lookback_seconds: int | None = None,
        clock: Clock = utc_now,
    ) -> None:
        """Initialize the scheduler.

        Args:
            orchestrator_factory: Returns an async context manager yielding a
                                  ready ``SyncOrchestrator``.
            interval_seconds:     Seconds to wait after one run before the next.
            lookback_seconds:     When set, only resources updated within this
                                  window are requested.  None means no filter.
            clock:                Returns the current UTC datetime.
        """
        self._factory = orchestrator_factory
        self._interval = interval_seconds
        self._lookback = lookback_seconds
        self._clock = clock
        self._task: asyncio.Task | None = None
        self.last_run_at: datetime | None = None
        self.last_report: AutoSyncReport | None = None
        self.last_error: str | None = None

    @property
    def interval_seconds(self) -> int:
        return self._interval

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def _window_start(self) -> datetime | None:
        if self._lookback is None:
            return None
        return self._clock() - timedelta(seconds=self._lookback)

    async def run_once(self) -> AutoSyncReport:
        """Execute one scheduled run.  Errors propagate after being recorded."""
        self.last_run_at = self._clock()
        logger.info("Auto-sync run started at %s", self.last_run_at.isoformat())
        try:
            async with self._factory() as orchestrator:
                report = await run_auto_sync(
                    orchestrator,
                    last_updated_since=self._window_start(),
                    clock=self._clock,
                )
        except Exception as exc:
            self.last_error = str(exc) or exc.__class__.__name__
            raise
        self.last_report = report
        self.last_error = None
        return report

    def start(self) -> None:
        if self.is_running:
            logger.debug("AutoSyncScheduler: already running")
            return
        logger.info("AutoSyncScheduler: starting (interval=%ds)", self._interval)
        self._task = asyncio.create_task(self._loop(), name="fhir-auto-sync")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("AutoSyncScheduler: stopped")

    async def _loop(self) -> None:
        while True:
            try:
                await self.run_once()
            except Exception:
                logger.exception("Auto-sync run failed")
            await asyncio.sleep(self._interval)
