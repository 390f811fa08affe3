"""odds_etl.models

Record shapes for the event/odds import.

Input side (decoded from the provider batch, never mutated):
  Message → EventUpdate → OddUpdate

Canonical side (built by the merger, read by persistence):
  CanonicalEvent → CanonicalOdd
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime


# ---------------------------------------------------------------------------
# Input records
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class OddUpdate:
    provider_odds_id: int
    odds_name: str | None
    odds_rate: float
    status: str | None


@dataclass(frozen=True)
class EventUpdate:
    provider_event_id: int
    event_name: str | None
    event_date: datetime
    odds_list: list[OddUpdate] | None = None


@dataclass(frozen=True)
class Message:
    message_id: uuid.UUID
    generated_date: datetime
    event: EventUpdate | None = None


# ---------------------------------------------------------------------------
# Canonical records
# ---------------------------------------------------------------------------

@dataclass
class CanonicalOdd:
    """One odds line.  odds_name is fixed by the first update that saw it."""

    provider_odds_id: int
    odds_name: str | None
    odds_rate: float
    status: str | None


@dataclass
class CanonicalEvent:
    """Merged state of one provider event.

    odds is keyed by provider_odds_id and keeps first-sighting order.
    None means the record was built without an odds collection, which
    persistence rejects.
    """

    provider_event_id: int
    event_name: str | None
    event_date: datetime
    odds: dict[int, CanonicalOdd] | None = field(default_factory=dict)

    def odds_rows(self) -> list[CanonicalOdd]:
        return list(self.odds.values()) if self.odds is not None else []
