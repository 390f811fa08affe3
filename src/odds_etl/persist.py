"""odds_etl.persist

Write one CanonicalEvent to PostgreSQL as a single transaction.

Processing order per event:
  1.  Upsert the events row on provider_event_id → surrogate id
  2.  Split odds into batches of max_parameters_per_statement // 5 rows
  3.  One multi-row INSERT ... ON CONFLICT (provider_odds_id) per batch
  4.  COMMIT (or ROLLBACK when dry_run); any error rolls back and re-raises

Conflict policy mirrors the merge: a matched event gets name/date replaced;
a matched odd gets only odds_rate/status replaced, never odds_name or its
event link.  Re-running the same event converges to the same stored state.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import Any

import psycopg

from odds_etl.models import CanonicalEvent, CanonicalOdd

# provider_odds_id, event_id, odds_name, odds_rate, status
PARAMS_PER_ODD_ROW = 5


class MalformedEventError(Exception):
    """Raised when a canonical event cannot be persisted as-is (not retryable)."""


# ---------------------------------------------------------------------------
# Batching / statement building
# ---------------------------------------------------------------------------

def odds_batch_size(max_parameters_per_statement: int) -> int:
    size = max_parameters_per_statement // PARAMS_PER_ODD_ROW
    if size < 1:
        raise ValueError(
            f"max_parameters_per_statement={max_parameters_per_statement} "
            f"cannot fit one odds row ({PARAMS_PER_ODD_ROW} parameters)"
        )
    return size


def batch_odds(
    odds: Sequence[CanonicalOdd],
    max_parameters_per_statement: int,
) -> list[list[CanonicalOdd]]:
    """Chunk odds so each batch binds at most max_parameters_per_statement values."""
    size = odds_batch_size(max_parameters_per_statement)
    return [list(odds[i:i + size]) for i in range(0, len(odds), size)]


def build_odds_upsert(
    event_id: int,
    batch: Sequence[CanonicalOdd],
) -> tuple[str, dict[str, Any]]:
    """Return (sql, params) upserting every odd in batch in one statement.

    Placeholders are suffixed with the row index so names never collide
    within the statement.
    """
    values_sql: list[str] = []
    params: dict[str, Any] = {}
    for j, odd in enumerate(batch):
        values_sql.append(
            f"(%(provider_odds_id_{j})s, %(event_id_{j})s, %(odds_name_{j})s, "
            f"%(odds_rate_{j})s, %(status_{j})s)"
        )
        params[f"provider_odds_id_{j}"] = odd.provider_odds_id
        params[f"event_id_{j}"] = event_id
        params[f"odds_name_{j}"] = odd.odds_name
        params[f"odds_rate_{j}"] = odd.odds_rate
        params[f"status_{j}"] = odd.status

    sql = (
        "INSERT INTO odds (provider_odds_id, event_id, odds_name, odds_rate, status)\n"
        "VALUES\n  "
        + ",\n  ".join(values_sql)
        + "\nON CONFLICT (provider_odds_id) DO UPDATE SET\n"
        "  odds_rate = EXCLUDED.odds_rate,\n"
        "  status = EXCLUDED.status,\n"
        "  last_updated = now()"
    )
    return sql, params


# ---------------------------------------------------------------------------
# DB helpers
# ---------------------------------------------------------------------------

def upsert_event(conn: psycopg.Connection, event: CanonicalEvent) -> int:
    """Upsert the events row and return its surrogate id.  Caller manages transaction."""
    row = conn.execute(
        """
        INSERT INTO events (provider_event_id, event_name, event_date)
        VALUES (%s, %s, %s)
        ON CONFLICT (provider_event_id) DO UPDATE SET
          event_name = EXCLUDED.event_name,
          event_date = EXCLUDED.event_date,
          last_updated = now()
        RETURNING id
        """,
        (event.provider_event_id, event.event_name, event.event_date),
    ).fetchone()
    if row is None:
        raise psycopg.DataError(
            f"events upsert returned no id for provider_event_id={event.provider_event_id}"
        )
    return int(row[0])


def upsert_odds_batch(
    conn: psycopg.Connection,
    event_id: int,
    batch: Sequence[CanonicalOdd],
) -> None:
    if not batch:
        return
    sql, params = build_odds_upsert(event_id, batch)
    conn.execute(sql, params)


# ---------------------------------------------------------------------------
# Transaction
# ---------------------------------------------------------------------------

def save_event(
    connect: Callable[[], psycopg.Connection],
    event: CanonicalEvent,
    *,
    max_parameters_per_statement: int,
    dry_run: bool = False,
) -> int:
    """Persist one canonical event atomically; return the events surrogate id.

    Opens (and always closes) its own connection from connect().  Every
    statement runs in one transaction, so a failure in any odds batch
    leaves nothing from this attempt behind.
    """
    if event.odds is None:
        raise MalformedEventError(
            f"provider_event_id={event.provider_event_id} has no odds collection"
        )
    batches = batch_odds(event.odds_rows(), max_parameters_per_statement)

    conn = connect()
    try:
        event_id = upsert_event(conn, event)
        for batch in batches:
            upsert_odds_batch(conn, event_id, batch)
        if dry_run:
            conn.rollback()
        else:
            conn.commit()
        return event_id
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()
