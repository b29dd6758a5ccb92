"""Error taxonomy for the Loki log client."""


class LokiLogError(Exception):
    """Base class for every error raised by lokilog."""


class ConfigError(LokiLogError, ValueError):
    """Raised when a client configuration value is out of range."""


class NormalizationError(LokiLogError):
    """Raised when a serialized record cannot be turned into a LogEntry."""


class MalformedRecord(NormalizationError):
    """The record is not a JSON object."""


class MissingField(NormalizationError):
    """A required field (timestamp or message) is absent."""

    def __init__(self, field: str):
        super().__init__(f"missing {field} parameter")
        self.field = field


class InvalidTimestamp(NormalizationError):
    """The timestamp field is not in millisecond-precision RFC 3339 form."""


class InvalidMessageType(NormalizationError):
    """The message field is not a string."""


class SerializationError(LokiLogError):
    """A batch could not be rendered into a push request body."""
