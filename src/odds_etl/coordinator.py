"""odds_etl.coordinator

Concurrent persistence of canonical events.

Per-event task:
  1.  Optional random start delay (outside the permit)
  2.  Acquire one of max_concurrent_persists permits
  3.  Up to max_retries attempts of persist(); after failed attempt i,
      sleep retry_backoff_base ** i before the next one
  4.  On success bump the shared counter and report progress
  5.  Release the permit on every exit path

Every failure is retried except those in NON_RETRYABLE_ERRORS, which no
number of attempts can fix.  A failed event never raises past its task;
run() always returns a RunSummary.
"""

from __future__ import annotations

import logging
import random
import threading
import time
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Protocol

import click
import psycopg

from odds_etl.config import PersistConfig
from odds_etl.models import CanonicalEvent
from odds_etl.persist import MalformedEventError, save_event

log = logging.getLogger(__name__)

NON_RETRYABLE_ERRORS: tuple[type[Exception], ...] = (
    MalformedEventError,
    psycopg.IntegrityError,
    psycopg.DataError,
)

SUCCEEDED = "succeeded"
FAILED = "failed"


# ---------------------------------------------------------------------------
# Outcomes
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class EventOutcome:
    provider_event_id: int
    status: str
    attempts: int
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == SUCCEEDED


@dataclass
class RunSummary:
    total: int
    succeeded: int
    outcomes: list[EventOutcome] = field(default_factory=list)
    elapsed_seconds: float = 0.0

    @property
    def failed(self) -> int:
        return self.total - self.succeeded

    def failures(self) -> list[EventOutcome]:
        return [o for o in self.outcomes if not o.succeeded]

    def to_dict(self) -> dict[str, Any]:
        return {
            "events_total": self.total,
            "events_succeeded": self.succeeded,
            "events_failed": self.failed,
            "elapsed_seconds": round(self.elapsed_seconds, 3),
            "failed_provider_event_ids": [o.provider_event_id for o in self.failures()][:50],
        }


# ---------------------------------------------------------------------------
# Progress reporting
# ---------------------------------------------------------------------------

class ProgressReporter(Protocol):
    def event_persisted(self, event: CanonicalEvent, succeeded: int, total: int) -> None:
        ...

    def event_failed(self, event: CanonicalEvent, outcome: EventOutcome, total: int) -> None:
        ...


@dataclass
class EchoReporter:
    """Console progress lines, prefixed with the run id."""

    run_id: str

    def event_persisted(self, event: CanonicalEvent, succeeded: int, total: int) -> None:
        click.echo(
            f"[{self.run_id}] Persisted event {event.provider_event_id} "
            f"({succeeded} / {total} succeeded)"
        )

    def event_failed(self, event: CanonicalEvent, outcome: EventOutcome, total: int) -> None:
        click.echo(
            f"[{self.run_id}] ERROR: event {event.provider_event_id} failed after "
            f"{outcome.attempts} attempt(s): {outcome.error}",
            err=True,
        )


@dataclass
class NullReporter:
    def event_persisted(self, event: CanonicalEvent, succeeded: int, total: int) -> None:
        pass

    def event_failed(self, event: CanonicalEvent, outcome: EventOutcome, total: int) -> None:
        pass


# ---------------------------------------------------------------------------
# Coordinator
# ---------------------------------------------------------------------------

class PersistenceCoordinator:
    """Fan save_event() out over all events with a bounded number in flight."""

    def __init__(
        self,
        connect: Callable[[], psycopg.Connection],
        config: PersistConfig,
        reporter: ProgressReporter | None = None,
        persist: Callable[..., Any] = save_event,
        sleep: Callable[[float], None] = time.sleep,
        rng: random.Random | None = None,
    ) -> None:
        self.connect = connect
        self.config = config
        self.reporter = reporter or NullReporter()
        self._persist = persist
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._rng_lock = threading.Lock()
        self._permits = threading.BoundedSemaphore(config.max_concurrent_persists)
        self._count_lock = threading.Lock()
        self._succeeded = 0

    def run(self, events: Sequence[CanonicalEvent]) -> RunSummary:
        total = len(events)
        self._succeeded = 0
        started = time.monotonic()
        if not events:
            return RunSummary(total=0, succeeded=0)

        workers = max(
            self.config.max_concurrent_persists,
            min(total, self.config.worker_pool_size),
        )
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="persist") as executor:
            futures = [executor.submit(self._run_task, event, total) for event in events]
            outcomes = [f.result() for f in futures]

        return RunSummary(
            total=total,
            succeeded=self._succeeded,
            outcomes=outcomes,
            elapsed_seconds=time.monotonic() - started,
        )

    def _run_task(self, event: CanonicalEvent, total: int) -> EventOutcome:
        delay = self._start_delay()
        if delay > 0:
            self._sleep(delay)

        with self._permits:
            outcome = self._attempt(event)

        if outcome.succeeded:
            with self._count_lock:
                self._succeeded += 1
                done = self._succeeded
            self.reporter.event_persisted(event, done, total)
        else:
            self.reporter.event_failed(event, outcome, total)
        return outcome

    def _start_delay(self) -> float:
        ceiling = self.config.max_start_delay_seconds
        if ceiling <= 0:
            return 0.0
        with self._rng_lock:
            return self._rng.uniform(0.0, ceiling)

    def _attempt(self, event: CanonicalEvent) -> EventOutcome:
        max_retries = self.config.max_retries
        last_error: Exception | None = None
        for attempt in range(1, max_retries + 1):
            try:
                self._persist(
                    self.connect,
                    event,
                    max_parameters_per_statement=self.config.max_parameters_per_statement,
                    dry_run=self.config.dry_run,
                )
                return EventOutcome(event.provider_event_id, SUCCEEDED, attempt)
            except NON_RETRYABLE_ERRORS as exc:
                return EventOutcome(event.provider_event_id, FAILED, attempt, str(exc))
            except Exception as exc:
                last_error = exc
                if attempt == max_retries:
                    break
                backoff = self.config.retry_backoff_base ** attempt
                log.warning(
                    "Attempt %s/%s for provider_event_id=%s failed (%r); retrying in %.1fs",
                    attempt, max_retries, event.provider_event_id, exc, backoff,
                )
                self._sleep(backoff)
        log.error(
            "Giving up on provider_event_id=%s after %s attempt(s)",
            event.provider_event_id, max_retries,
            exc_info=last_error,
        )
        return EventOutcome(event.provider_event_id, FAILED, max_retries, str(last_error))
