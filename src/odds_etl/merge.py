"""odds_etl.merge

Fold an ordered message batch into one CanonicalEvent per provider event.

Merge policy:
  - event_name / event_date: last write wins.
  - odds already seen: only odds_rate and status change; odds_name keeps
    the value from the update that introduced the odd.
  - odds not yet seen: inserted with name, rate and status.
  - a message without an event is skipped; an event without an odds list
    still updates name/date.

Output order is first-sighting order of provider_event_id.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from odds_etl.models import CanonicalEvent, CanonicalOdd, EventUpdate, Message


@dataclass
class MergeStats:
    messages_seen: int = 0
    messages_without_event: int = 0
    odds_inserted: int = 0
    odds_updated: int = 0

    def to_dict(self) -> dict[str, int]:
        return dict(self.__dict__)


class EventMerger:
    """Single-pass, order-sensitive accumulator over Message records."""

    def __init__(self) -> None:
        self._events: dict[int, CanonicalEvent] = {}
        self.stats = MergeStats()

    def apply(self, message: Message) -> None:
        self.stats.messages_seen += 1
        incoming = message.event
        if incoming is None:
            self.stats.messages_without_event += 1
            return

        current = self._events.get(incoming.provider_event_id)
        if current is None:
            current = CanonicalEvent(
                provider_event_id=incoming.provider_event_id,
                event_name=incoming.event_name,
                event_date=incoming.event_date,
            )
            self._events[incoming.provider_event_id] = current

        current.event_name = incoming.event_name
        current.event_date = incoming.event_date

        if incoming.odds_list is not None:
            self._merge_odds(current, incoming)

    def _merge_odds(self, current: CanonicalEvent, incoming: EventUpdate) -> None:
        for odd in incoming.odds_list or []:
            existing = current.odds.get(odd.provider_odds_id)
            if existing is not None:
                existing.odds_rate = odd.odds_rate
                existing.status = odd.status
                self.stats.odds_updated += 1
            else:
                current.odds[odd.provider_odds_id] = CanonicalOdd(
                    provider_odds_id=odd.provider_odds_id,
                    odds_name=odd.odds_name,
                    odds_rate=odd.odds_rate,
                    status=odd.status,
                )
                self.stats.odds_inserted += 1

    def apply_all(self, messages: Iterable[Message]) -> EventMerger:
        for message in messages:
            self.apply(message)
        return self

    def events(self) -> list[CanonicalEvent]:
        return list(self._events.values())

    def __len__(self) -> int:
        return len(self._events)


def merge_messages(messages: Iterable[Message]) -> list[CanonicalEvent]:
    """Merge a full batch and return the canonical events."""
    return EventMerger().apply_all(messages).events()
