"""odds_etl.import_events

CLI entrypoint for the event/odds batch import.

Phases:
  1.  Resolve DSN + tunables (flags > YAML config > defaults)
  2.  Apply migrations (unless --no-create-schema)
  3.  Decode the JSON message batch and merge it in memory
  4.  Persist every canonical event concurrently, one transaction each
  5.  Write rejects CSV + run report

Usage:
    python -m odds_etl.import_events \\
        --db-dsn "$DB_DSN" \\
        --input-path "rawEvidence/messages.json" \\
        --max-concurrent-persists 10

Per-event persistence failures are reported and written to the rejects
file; the run still exits 0.  Configuration and decode errors exit 1.
"""

from __future__ import annotations

import logging
import sys
import time
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import NoReturn

import click
import psycopg

from odds_etl.config import (
    ConfigError,
    DSN_ENV_VAR,
    build_persist_config,
    load_config_file,
    resolve_dsn,
)
from odds_etl.coordinator import EchoReporter, PersistenceCoordinator, RunSummary
from odds_etl.decode import MessageDecodeError, load_messages
from odds_etl.merge import EventMerger
from odds_etl.models import CanonicalEvent
from odds_etl.schema import ensure_schema
from odds_etl.shared import RejectWriter, write_run_report


def _fatal(run_id: str, message: str) -> NoReturn:
    click.echo(f"[{run_id}] FATAL: {message}", err=True)
    sys.exit(1)


def _write_rejects(
    summary: RunSummary,
    events: list[CanonicalEvent],
    rejects: RejectWriter,
) -> None:
    by_id = {e.provider_event_id: e for e in events}
    for outcome in summary.failures():
        event = by_id.get(outcome.provider_event_id)
        rejects.write(
            {
                "provider_event_id": outcome.provider_event_id,
                "event_name": event.event_name if event else None,
                "attempts": outcome.attempts,
            },
            outcome.error or "unknown_error",
        )


@click.command()
@click.option("--db-dsn", default=None, help=f"PostgreSQL DSN (falls back to ${DSN_ENV_VAR}, then the config file)")
@click.option("--input-path", default="messages.json", show_default=True, type=click.Path(), help="JSON message batch")
@click.option("--config-path", default=None, type=click.Path(), help="Optional YAML config file")
@click.option("--max-concurrent-persists", default=None, type=int, help="Simultaneous in-flight event writes [default: 10]")
@click.option("--max-parameters-per-statement", default=None, type=int, help="Bound parameters per odds statement [default: 1800]")
@click.option("--max-retries", default=None, type=int, help="Attempts per event [default: 3]")
@click.option("--retry-backoff-base", default=None, type=float, help="Backoff is base ** attempt seconds [default: 3]")
@click.option("--max-start-delay-seconds", default=None, type=float, help="Random pre-attempt delay ceiling [default: 0]")
@click.option("--worker-pool-size", default=None, type=int, help="Thread pool size ceiling [default: 32]")
@click.option(
    "--create-schema/--no-create-schema",
    default=True,
    show_default=True,
    help="Apply migrations before importing",
)
@click.option("--migrations-dir", default="./migrations", show_default=True, type=click.Path())
@click.option("--dry-run", is_flag=True, default=False, help="Run every transaction, then roll it back")
@click.option(
    "--rejects-path",
    default="./artifacts/rejects/event_odds_rejects.csv",
    show_default=True,
)
@click.option("--reports-dir", default="./artifacts/reports", show_default=True, type=click.Path())
@click.option("--run-id", default=None, help="Override UUID for log correlation")
@click.option(
    "--log-level",
    default="WARNING",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
    show_default=True,
)
def main(
    db_dsn: str | None,
    input_path: str,
    config_path: str | None,
    max_concurrent_persists: int | None,
    max_parameters_per_statement: int | None,
    max_retries: int | None,
    retry_backoff_base: float | None,
    max_start_delay_seconds: float | None,
    worker_pool_size: int | None,
    create_schema: bool,
    migrations_dir: str,
    dry_run: bool,
    rejects_path: str,
    reports_dir: str,
    run_id: str | None,
    log_level: str,
) -> None:
    """Merge a batch of event/odds update messages and upsert them into PostgreSQL."""
    logging.basicConfig(
        level=getattr(logging, log_level),
        format="%(asctime)s %(levelname)s %(threadName)s %(name)s: %(message)s",
    )
    run_id = run_id or str(uuid.uuid4())
    started_at = datetime.now(timezone.utc).isoformat()
    started = time.monotonic()

    click.echo(f"[{run_id}] Starting event_odds_import run (dry_run={dry_run})")

    # ------------------------------------------------------------------ #
    # Phase 1: Configuration                                               #
    # ------------------------------------------------------------------ #
    try:
        file_values = load_config_file(Path(config_path)) if config_path else {}
        persist_config = build_persist_config(
            file_values,
            {
                "max_concurrent_persists": max_concurrent_persists,
                "max_parameters_per_statement": max_parameters_per_statement,
                "max_retries": max_retries,
                "retry_backoff_base": retry_backoff_base,
                "max_start_delay_seconds": max_start_delay_seconds,
                "worker_pool_size": worker_pool_size,
            },
            dry_run=dry_run,
        )
    except ConfigError as exc:
        _fatal(run_id, str(exc))

    dsn = resolve_dsn(db_dsn, file_values)
    if not dsn:
        _fatal(
            run_id,
            f"no connection string; pass --db-dsn, set ${DSN_ENV_VAR}, "
            "or set connection_strings.default in the config file",
        )

    source = Path(input_path)
    if not source.is_file():
        _fatal(run_id, f"input file not found: {source}")

    # ------------------------------------------------------------------ #
    # Phase 2: Schema                                                      #
    # ------------------------------------------------------------------ #
    if create_schema:
        try:
            applied = ensure_schema(dsn, Path(migrations_dir))
        except (ConfigError, psycopg.Error) as exc:
            _fatal(run_id, f"schema setup failed: {exc}")
        click.echo(f"[{run_id}] Schema ready ({len(applied)} migration(s) applied)")

    # ------------------------------------------------------------------ #
    # Phase 3: Decode + merge                                              #
    # ------------------------------------------------------------------ #
    try:
        messages = load_messages(source)
    except MessageDecodeError as exc:
        _fatal(run_id, f"could not decode {source}: {exc}")

    merger = EventMerger().apply_all(messages)
    events = merger.events()
    click.echo(
        f"[{run_id}] Merged {merger.stats.messages_seen} message(s) into "
        f"{len(events)} event(s) ({merger.stats.messages_without_event} without event)"
    )

    # ------------------------------------------------------------------ #
    # Phase 4: Persist                                                     #
    # ------------------------------------------------------------------ #
    click.echo(
        f"[{run_id}] Persisting with max_concurrent_persists="
        f"{persist_config.max_concurrent_persists}"
    )
    coordinator = PersistenceCoordinator(
        connect=lambda: psycopg.connect(dsn, autocommit=False),
        config=persist_config,
        reporter=EchoReporter(run_id),
    )
    summary = coordinator.run(events)

    # ------------------------------------------------------------------ #
    # Phase 5: Artifacts                                                   #
    # ------------------------------------------------------------------ #
    rejects = RejectWriter(Path(rejects_path))
    try:
        _write_rejects(summary, events, rejects)
    finally:
        rejects.close()

    counters = {**merger.stats.to_dict(), **summary.to_dict()}
    report_path = write_run_report(
        run_id, started_at, dry_run,
        {"input_path": str(source)},
        counters,
        reports_dir=Path(reports_dir),
    )

    click.echo(
        f"[{run_id}] Persisted {summary.succeeded} / {summary.total} event(s); "
        f"{summary.failed} failed"
    )
    if rejects.rows_written:
        click.echo(f"[{run_id}] Rejects: {rejects.path}")
    if dry_run:
        click.echo(f"[{run_id}] [dry-run] All changes rolled back.")
    click.echo(f"[{run_id}] Run report: {report_path}")
    click.echo(f"[{run_id}] Total time: {time.monotonic() - started:.2f}s")


if __name__ == "__main__":
    main()
