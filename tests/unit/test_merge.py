"""Unit tests for the in-memory event/odds merge.

No database access required.
"""

from __future__ import annotations

import copy
import uuid
from datetime import datetime, timezone

from odds_etl.merge import EventMerger, merge_messages
from odds_etl.models import EventUpdate, Message, OddUpdate

T1 = datetime(2025, 5, 10, 18, 0, 0)
T2 = datetime(2025, 5, 11, 20, 30, 0)
GENERATED = datetime(2025, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


def _msg(event: EventUpdate | None) -> Message:
    return Message(message_id=uuid.uuid4(), generated_date=GENERATED, event=event)


def _event(pid: int, name: str, date: datetime = T1, odds=None) -> EventUpdate:
    return EventUpdate(provider_event_id=pid, event_name=name, event_date=date, odds_list=odds)


def _odd(oid: int, name: str, rate: float, status: str) -> OddUpdate:
    return OddUpdate(provider_odds_id=oid, odds_name=name, odds_rate=rate, status=status)


# ---------------------------------------------------------------------------
# Event fields
# ---------------------------------------------------------------------------

class TestEventFields:
    def test_last_write_wins_on_name(self):
        events = merge_messages([_msg(_event(100, "A")), _msg(_event(100, "B"))])
        assert len(events) == 1
        assert events[0].event_name == "B"

    def test_last_write_wins_on_date(self):
        events = merge_messages([_msg(_event(100, "A", T1)), _msg(_event(100, "A", T2))])
        assert events[0].event_date == T2

    def test_later_name_wins_even_with_fewer_odds(self):
        first = _event(100, "Full", odds=[_odd(1, "Home", 1.8, "Open"), _odd(2, "Away", 2.1, "Open")])
        second = _event(100, "Partial", odds=[])
        events = merge_messages([_msg(first), _msg(second)])
        assert events[0].event_name == "Partial"
        assert len(events[0].odds) == 2

    def test_message_without_event_is_skipped(self):
        merger = EventMerger().apply_all([_msg(None), _msg(_event(1, "X")), _msg(None)])
        assert len(merger) == 1
        assert merger.stats.messages_seen == 3
        assert merger.stats.messages_without_event == 2

    def test_missing_odds_list_still_updates_event(self):
        first = _event(100, "Derby", odds=[_odd(1, "Home", 1.8, "Open")])
        second = _event(100, "Derby FT", T2, odds=None)
        events = merge_messages([_msg(first), _msg(second)])
        assert events[0].event_name == "Derby FT"
        assert events[0].event_date == T2
        assert events[0].odds[1].odds_rate == 1.8

    def test_event_without_any_odds_gets_empty_collection(self):
        events = merge_messages([_msg(_event(7, "No markets", odds=None))])
        assert events[0].odds == {}


# ---------------------------------------------------------------------------
# Odds
# ---------------------------------------------------------------------------

class TestOdds:
    def test_existing_odd_keeps_name_updates_rate_and_status(self):
        first = _event(100, "Derby", odds=[_odd(1, "Home", 1.80, "Open")])
        second = _event(100, "Derby", odds=[_odd(1, "HOME-RENAMED", 1.95, "Suspended")])
        odd = merge_messages([_msg(first), _msg(second)])[0].odds[1]
        assert odd.odds_name == "Home"
        assert odd.odds_rate == 1.95
        assert odd.status == "Suspended"

    def test_new_odd_inserted_with_all_fields(self):
        first = _event(100, "Derby", odds=[_odd(1, "Home", 1.8, "Open")])
        second = _event(100, "Derby", odds=[_odd(2, "Draw", 3.2, "Open")])
        odds = merge_messages([_msg(first), _msg(second)])[0].odds
        assert list(odds) == [1, 2]
        assert odds[2].odds_name == "Draw"
        assert odds[2].odds_rate == 3.2

    def test_duplicate_odd_in_one_message_collapses(self):
        ev = _event(5, "E", odds=[_odd(1, "Home", 1.5, "Open"), _odd(1, "Other", 1.7, "Closed")])
        merger = EventMerger().apply_all([_msg(ev)])
        odds = merger.events()[0].odds
        assert len(odds) == 1
        assert odds[1].odds_name == "Home"
        assert odds[1].odds_rate == 1.7
        assert merger.stats.odds_inserted == 1
        assert merger.stats.odds_updated == 1

    def test_same_odd_id_under_different_events_is_independent(self):
        a = _event(1, "A", odds=[_odd(9, "Home", 1.1, "Open")])
        b = _event(2, "B", odds=[_odd(9, "Away", 2.2, "Open")])
        events = merge_messages([_msg(a), _msg(b)])
        assert events[0].odds[9].odds_name == "Home"
        assert events[1].odds[9].odds_name == "Away"

    def test_input_records_not_aliased(self):
        incoming = _odd(1, "Home", 1.8, "Open")
        events = merge_messages([_msg(_event(1, "A", odds=[incoming]))])
        events[0].odds[1].odds_rate = 99.0
        assert incoming.odds_rate == 1.8


# ---------------------------------------------------------------------------
# Ordering / determinism
# ---------------------------------------------------------------------------

class TestOrdering:
    def test_first_sighting_order_not_sorted(self):
        msgs = [_msg(_event(30, "c")), _msg(_event(10, "a")), _msg(_event(20, "b")), _msg(_event(30, "c2"))]
        assert [e.provider_event_id for e in merge_messages(msgs)] == [30, 10, 20]

    def test_keys_unique(self):
        msgs = [
            _msg(_event(i % 4, f"e{i}", odds=[_odd(j % 3, f"o{j}", 1.0 + j, "Open") for j in range(i)]))
            for i in range(20)
        ]
        events = merge_messages(msgs)
        ids = [e.provider_event_id for e in events]
        assert len(ids) == len(set(ids)) == 4
        for e in events:
            assert len(e.odds) == len(set(o.provider_odds_id for o in e.odds.values()))

    def test_deterministic(self):
        msgs = [
            _msg(_event(1, "A", odds=[_odd(1, "Home", 1.8, "Open")])),
            _msg(_event(2, "B")),
            _msg(_event(1, "A2", odds=[_odd(1, "x", 2.0, "Suspended"), _odd(2, "Draw", 3.0, "Open")])),
        ]
        assert merge_messages(msgs) == merge_messages(msgs)

    def test_disjoint_events_reorder_has_no_effect(self):
        a = _msg(_event(1, "A", odds=[_odd(1, "Home", 1.8, "Open")]))
        b = _msg(_event(2, "B", odds=[_odd(5, "Away", 2.5, "Open")]))
        by_id_1 = {e.provider_event_id: e for e in merge_messages([a, b])}
        by_id_2 = {e.provider_event_id: e for e in merge_messages([b, a])}
        assert by_id_1 == by_id_2

    def test_same_event_reorder_changes_name(self):
        a = _msg(_event(1, "A"))
        b = _msg(_event(1, "B"))
        assert merge_messages([a, b])[0].event_name == "B"
        assert merge_messages([b, a])[0].event_name == "A"

    def test_merge_idempotent(self):
        msgs = [
            _msg(_event(100, "Derby", T1, [_odd(1, "Home", 1.8, "Open")])),
            _msg(None),
            _msg(_event(100, "Derby FT", T1, [_odd(1, "Home", 1.5, "Suspended"), _odd(2, "Draw", 3.2, "Open")])),
            _msg(_event(200, "Cup", T2, None)),
        ]
        merger = EventMerger().apply_all(msgs)
        once = copy.deepcopy(merger.events())
        merger.apply_all(msgs)
        assert merger.events() == once
