"""odds_etl.decode

Decode a provider message batch (JSON array) into Message records.

Field-level parsers accept the raw JSON value and either return the typed
value or raise MessageDecodeError.  Unknown keys are ignored; a missing or
null "Event" / "OddsList" is valid.
"""

from __future__ import annotations

import json
import re
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any

from odds_etl.models import EventUpdate, Message, OddUpdate

_FRACTION_RE = re.compile(r"(\.\d{6})\d+")


class MessageDecodeError(Exception):
    """Raised when the input batch cannot be decoded into messages."""


# ---------------------------------------------------------------------------
# Field parsers
# ---------------------------------------------------------------------------

def parse_iso_ts(value: Any, field_name: str) -> datetime:
    """Parse an ISO-8601 timestamp.

    Accepts a trailing 'Z' and truncates sub-microsecond fractions
    ('2024-05-01T18:00:00.1234567' → microsecond precision).
    """
    if not isinstance(value, str) or not value.strip():
        raise MessageDecodeError(f"{field_name}: expected timestamp string, got {value!r}")
    v = value.strip()
    if v.endswith(("Z", "z")):
        v = v[:-1] + "+00:00"
    v = _FRACTION_RE.sub(r"\1", v)
    try:
        return datetime.fromisoformat(v)
    except ValueError as exc:
        raise MessageDecodeError(f"{field_name}: unparseable timestamp {value!r}") from exc


def parse_int(value: Any, field_name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise MessageDecodeError(f"{field_name}: expected integer, got {value!r}")
    return value


def parse_float(value: Any, field_name: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise MessageDecodeError(f"{field_name}: expected number, got {value!r}")
    return float(value)


def parse_opt_str(value: Any, field_name: str) -> str | None:
    if value is None or isinstance(value, str):
        return value
    raise MessageDecodeError(f"{field_name}: expected string, got {value!r}")


def parse_uuid(value: Any, field_name: str) -> uuid.UUID:
    try:
        return uuid.UUID(str(value))
    except ValueError as exc:
        raise MessageDecodeError(f"{field_name}: invalid UUID {value!r}") from exc


# ---------------------------------------------------------------------------
# Record decoders
# ---------------------------------------------------------------------------

def _require_object(value: Any, what: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise MessageDecodeError(f"{what}: expected object, got {type(value).__name__}")
    return value


def decode_odd(raw: Any) -> OddUpdate:
    obj = _require_object(raw, "OddsList item")
    return OddUpdate(
        provider_odds_id=parse_int(obj.get("ProviderOddsID"), "ProviderOddsID"),
        odds_name=parse_opt_str(obj.get("OddsName"), "OddsName"),
        odds_rate=parse_float(obj.get("OddsRate"), "OddsRate"),
        status=parse_opt_str(obj.get("Status"), "Status"),
    )


def decode_event(raw: Any) -> EventUpdate:
    obj = _require_object(raw, "Event")
    raw_odds = obj.get("OddsList")
    if raw_odds is not None and not isinstance(raw_odds, list):
        raise MessageDecodeError(f"OddsList: expected array, got {type(raw_odds).__name__}")
    return EventUpdate(
        provider_event_id=parse_int(obj.get("ProviderEventID"), "ProviderEventID"),
        event_name=parse_opt_str(obj.get("EventName"), "EventName"),
        event_date=parse_iso_ts(obj.get("EventDate"), "EventDate"),
        odds_list=[decode_odd(o) for o in raw_odds] if raw_odds is not None else None,
    )


def decode_message(raw: Any) -> Message:
    obj = _require_object(raw, "Message")
    raw_event = obj.get("Event")
    return Message(
        message_id=parse_uuid(obj.get("MessageID"), "MessageID"),
        generated_date=parse_iso_ts(obj.get("GeneratedDate"), "GeneratedDate"),
        event=decode_event(raw_event) if raw_event is not None else None,
    )


def decode_messages(payload: Any) -> list[Message]:
    """Decode an already-parsed JSON value into messages, in batch order."""
    if not isinstance(payload, list):
        raise MessageDecodeError(
            f"message batch: expected array, got {type(payload).__name__}"
        )
    messages: list[Message] = []
    for idx, raw in enumerate(payload):
        try:
            messages.append(decode_message(raw))
        except MessageDecodeError as exc:
            raise MessageDecodeError(f"message[{idx}]: {exc}") from exc
    return messages


def load_messages(path: Path) -> list[Message]:
    """Read and decode a JSON message batch file."""
    try:
        payload = json.loads(path.read_text(encoding="utf-8-sig"))
    except json.JSONDecodeError as exc:
        raise MessageDecodeError(f"{path}: invalid JSON ({exc})") from exc
    except UnicodeDecodeError as exc:
        raise MessageDecodeError(f"{path}: not valid UTF-8 ({exc})") from exc
    except OSError as exc:
        raise MessageDecodeError(f"{path}: cannot read file ({exc})") from exc
    return decode_messages(payload)
