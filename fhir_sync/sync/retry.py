"""Bounded retry with unjittered exponential backoff, built on tenacity.

``retry`` knows nothing about the operation it wraps: it calls it, waits
``base_delay * backoff_factor ** (attempt - 1)`` seconds after each failure
while attempts remain, and re-raises the last exception unchanged once
``max_attempts`` invocations have all failed.

Defaults: 3 attempts, 1 s base delay, factor 2 (waits of 1 s then 2 s).
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from fhir_sync.observability import LoggingSyncEvents, SyncEvents

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY_SECONDS = 1.0
DEFAULT_BACKOFF_FACTOR = 2.0


@dataclass(frozen=True)
class RetryPolicy:
    """Retry parameters shared by every retried call of one orchestrator.

    Attributes:
        max_attempts:   Total invocations, including the first.
        base_delay:     Wait after the first failure, in seconds.
        backoff_factor: Multiplier applied to the wait after each failure.
    """

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    base_delay: float = DEFAULT_BASE_DELAY_SECONDS
    backoff_factor: float = DEFAULT_BACKOFF_FACTOR

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after failed ``attempt`` (1-based)."""
        return self.base_delay * self.backoff_factor ** (attempt - 1)


async def retry(
    operation: Callable[[], Awaitable[T]],
    name: str,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    base_delay: float = DEFAULT_BASE_DELAY_SECONDS,
    backoff_factor: float = DEFAULT_BACKOFF_FACTOR,
    *,
    sleep: Sleep = asyncio.sleep,
    events: SyncEvents | None = None,
) -> T:
    """Run ``operation`` until it succeeds or ``max_attempts`` is exhausted.

    Args:
        operation:      Zero-argument coroutine function to invoke.
        name:           Human-readable label used in emitted events.
        max_attempts:   Total invocations allowed (>= 1).
        base_delay:     Seconds to wait after the first failure.
        backoff_factor: Growth factor of the wait between attempts.
        sleep:          Awaitable sleep, injectable for tests.
        events:         Event sink; defaults to logging.

    Returns:
        The first successful result.

    Raises:
        ValueError: If ``max_attempts`` < 1.
        Exception:  The last failure, re-raised as-is.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    policy = RetryPolicy(max_attempts, base_delay, backoff_factor)
    sink = events or LoggingSyncEvents()

    def _report_failure(state: RetryCallState) -> None:
        exc = state.outcome.exception() if state.outcome else None
        attempt = state.attempt_number
        sink.emit(
            "retry.attempt_failed",
            operation=name,
            attempt=attempt,
            max_attempts=max_attempts,
            error=(str(exc) or exc.__class__.__name__) if exc else None,
            retry_in=policy.delay_for(attempt) if attempt < max_attempts else None,
        )

    retrying = AsyncRetrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=base_delay, exp_base=backoff_factor),
        retry=retry_if_exception_type(Exception),
        after=_report_failure,
        sleep=sleep,
        reraise=True,
    )
    return await retrying(operation)
