"""Entry normalizer: turns one serialized structured record into a LogEntry."""

import json
import re
from datetime import datetime, timezone

from lokilog.errors import (
    InvalidMessageType,
    InvalidTimestamp,
    MalformedRecord,
    MissingField,
)
from lokilog.models import LogEntry

TIME_KEY = "time"
MESSAGE_KEY = "msg"
SERVICE_KEY = "service"

# e.g. 2024-01-15T08:23:45.123Z or 2024-01-15T08:23:45.123+02:00
_TIMESTAMP_RE = re.compile(
    r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{3}(Z|[+-]\d{2}:\d{2})$"
)
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def parse_timestamp_nanos(value: str) -> int:
    """Parse a millisecond-precision timestamp into Unix nanoseconds.

    Raises InvalidTimestamp when *value* does not have exactly three
    fractional digits followed by ``Z`` or a ``±HH:MM`` offset.
    """
    if not _TIMESTAMP_RE.match(value):
        raise InvalidTimestamp(f"cannot parse {value!r} as a millisecond timestamp")
    try:
        dt = datetime.strptime(value, "%Y-%m-%dT%H:%M:%S.%f%z")
    except ValueError as exc:
        raise InvalidTimestamp(str(exc)) from exc

    delta = dt - _EPOCH
    micros = (delta.days * 86400 + delta.seconds) * 1_000_000 + delta.microseconds
    return micros * 1000


def _stringify(value) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    if isinstance(value, (dict, list)):
        return json.dumps(value, separators=(",", ":"), sort_keys=True)
    return str(value)


def normalize_record(raw) -> LogEntry:
    """Build a LogEntry from a JSON object held in *raw* (bytes or str).

    ``time`` and ``msg`` become the timestamp and line; ``service`` is
    dropped; every other field becomes string metadata.
    """
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise MalformedRecord(f"record is not valid UTF-8: {exc}") from exc

    try:
        values = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise MalformedRecord(f"record is not valid JSON: {exc}") from exc
    if not isinstance(values, dict):
        raise MalformedRecord(
            f"record must be a JSON object, got {type(values).__name__}"
        )

    if TIME_KEY not in values:
        raise MissingField(TIME_KEY)
    timestamp = values.pop(TIME_KEY)
    if not isinstance(timestamp, str):
        raise InvalidTimestamp("wrong time format")
    nanos = parse_timestamp_nanos(timestamp)

    if MESSAGE_KEY not in values:
        raise MissingField(MESSAGE_KEY)
    message = values.pop(MESSAGE_KEY)
    if not isinstance(message, str):
        raise InvalidMessageType("wrong msg format")

    values.pop(SERVICE_KEY, None)
    metadata = {key: _stringify(value) for key, value in values.items()}

    return LogEntry(timestamp_nanos=str(nanos), message=message, metadata=metadata)
