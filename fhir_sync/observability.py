"""Structured event emission for the sync core.

The orchestrator and retry executor never write to a stream directly; they
call ``SyncEvents.emit`` with an event name and keyword fields.  The default
implementation forwards events to stdlib logging.

Event names:
    sync.started / sync.fetched / sync.succeeded / sync.failed
    bulk.searched / bulk.completed
    cascade.completed
    retry.attempt_failed
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

logger = logging.getLogger("fhir_sync.events")

_WARNING_EVENTS = {"retry.attempt_failed"}
_ERROR_EVENTS = {"sync.failed"}


class SyncEvents(Protocol):
    """Sink for structured sync events."""

    def emit(self, event: str, **fields: Any) -> None: ...


class LoggingSyncEvents:
    """Render events as ``event key=value ...`` log lines.

    Failure events are logged at WARNING / ERROR, everything else at INFO.
    """

    def __init__(self, log: logging.Logger | None = None) -> None:
        self._log = log or logger

    def emit(self, event: str, **fields: Any) -> None:
        if event in _ERROR_EVENTS:
            level = logging.ERROR
        elif event in _WARNING_EVENTS:
            level = logging.WARNING
        else:
            level = logging.INFO
        rendered = " ".join(f"{key}={value!r}" for key, value in fields.items())
        self._log.log(level, "%s %s", event, rendered)
