"""Push-request serializer: renders a batch into the Loki push JSON body."""

import json
from typing import Mapping

from lokilog.errors import SerializationError
from lokilog.models import LogEntry


def build_push_request(labels: Mapping[str, str], batch: list[LogEntry]) -> dict:
    """Return the push body as a dict: one stream carrying every entry in order."""
    return {
        "streams": [
            {
                "stream": dict(labels),
                "values": [entry.to_value() for entry in batch],
            }
        ]
    }


def serialize_push_request(labels: Mapping[str, str], batch: list[LogEntry]) -> bytes:
    """Serialize *batch* under the static *labels* to UTF-8 JSON bytes."""
    try:
        return json.dumps(build_push_request(labels, batch)).encode("utf-8")
    except (TypeError, ValueError, AttributeError) as exc:
        raise SerializationError(f"cannot serialize batch: {exc}") from exc
