"""Log entry model."""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping


@dataclass(frozen=True)
class LogEntry:
    timestamp_nanos: str
    message: str
    metadata: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self):
        # Freeze a private copy so the producer can't mutate it after enqueue
        object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))

    def to_value(self) -> list:
        """Render the entry as a push-API value: [ts, line, {metadata}]."""
        return [self.timestamp_nanos, self.message, dict(self.metadata)]


Batch = list[LogEntry]
