"""Structured logger front end: console, day-rotated files and the Loki sink.

Records are rendered with the keys ``time`` (millisecond precision),
``level`` (lower case), ``caller`` (``path:line``) and ``msg``, followed by
any ``extra`` fields. That is the shape ``LokiClient.write`` expects.
"""

import json
import logging
import os
import sys
import threading
from datetime import datetime, timedelta, timezone
from logging.handlers import TimedRotatingFileHandler
from typing import Callable, Iterable, Optional

from lokilog.client import LokiClient

FILE_DATE_FORMAT = "%Y-%m-%d"
DEFAULT_LOGGER_NAME = "logx"

_RESERVED_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__
) | {"message", "asctime", "taskName"}

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def parse_level(value: str) -> int:
    """Map debug/info/warn/warning/error to a logging level; anything else is DEBUG."""
    return _LEVELS.get(value.strip().lower(), logging.DEBUG)


def format_time_milli(dt: datetime) -> str:
    """Render an aware datetime as 2024-01-15T08:23:45.123Z (or +02:00)."""
    base = dt.strftime("%Y-%m-%dT%H:%M:%S") + f".{dt.microsecond // 1000:03d}"
    offset = dt.utcoffset() or timedelta(0)
    if offset == timedelta(0):
        return base + "Z"
    sign = "+" if offset > timedelta(0) else "-"
    minutes = abs(int(offset.total_seconds())) // 60
    return f"{base}{sign}{minutes // 60:02d}:{minutes % 60:02d}"


class DynamicLevel(logging.Filter):
    """A level threshold that can be changed while loggers are running."""

    def __init__(self, level: int = logging.INFO):
        super().__init__()
        self._lock = threading.Lock()
        self._level = level

    @property
    def level(self) -> int:
        with self._lock:
            return self._level

    def set_level(self, level):
        if isinstance(level, str):
            level = parse_level(level)
        with self._lock:
            self._level = level

    def enabled(self, level: int) -> bool:
        return level >= self.level

    def filter(self, record: logging.LogRecord) -> bool:
        return self.enabled(record.levelno)


class StructuredFormatter(logging.Formatter):
    """Formats records as one JSON object or as ``key=value`` text."""

    def __init__(self, json_output: bool = True, utc: bool = True, root: Optional[str] = None):
        super().__init__()
        self._json = json_output
        self._utc = utc
        self._root = root if root is not None else os.getcwd()

    def _caller(self, record: logging.LogRecord) -> str:
        path = record.pathname
        try:
            rel = os.path.relpath(path, self._root)
        except ValueError:
            rel = os.path.basename(path)
        if rel.startswith(".."):
            rel = os.path.basename(path)
        return f"{rel.replace(os.sep, '/')}:{record.lineno}"

    def _timestamp(self, record: logging.LogRecord) -> str:
        if self._utc:
            dt = datetime.fromtimestamp(record.created, tz=timezone.utc)
        else:
            dt = datetime.fromtimestamp(record.created).astimezone()
        return format_time_milli(dt)

    def fields(self, record: logging.LogRecord) -> dict:
        fields = {
            "time": self._timestamp(record),
            "level": record.levelname.lower(),
            "caller": self._caller(record),
            "msg": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and not key.startswith("_"):
                fields[key] = value
        if record.exc_info:
            fields["exception"] = self.formatException(record.exc_info)
        return fields

    def format(self, record: logging.LogRecord) -> str:
        fields = self.fields(record)
        if self._json:
            return json.dumps(fields, default=str)
        return " ".join(f"{key}={_text_value(value)}" for key, value in fields.items())


def _text_value(value) -> str:
    text = value if isinstance(value, str) else str(value)
    if not text or any(c in text for c in ' ="\n\t'):
        return json.dumps(text)
    return text


class FieldsAdapter(logging.LoggerAdapter):
    """Adds fixed fields to every record, merged under per-call ``extra``."""

    def process(self, msg, kwargs):
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs

    def with_fields(self, **fields) -> "FieldsAdapter":
        return FieldsAdapter(self.logger, {**self.extra, **fields})


def with_fields(logger: logging.Logger, **fields) -> FieldsAdapter:
    """Return a logger view that attaches *fields* to each record."""
    return FieldsAdapter(logger, fields)


def error_fields(exc: Optional[BaseException]) -> dict:
    """``extra`` fields describing *exc*; empty when there is no error."""
    if exc is None:
        return {}
    return {"error": str(exc)}


class LokiHandler(logging.Handler):
    """Ships formatted records through a LokiClient.

    Records emitted by lokilog itself are skipped so diagnostics about the
    sink never loop back into it.
    """

    def __init__(self, client: LokiClient, level: int = logging.NOTSET, utc: bool = True):
        super().__init__(level)
        self._client = client
        self.setFormatter(StructuredFormatter(json_output=True, utc=utc))

    def filter(self, record: logging.LogRecord) -> bool:
        if record.name == "lokilog" or record.name.startswith("lokilog."):
            return False
        return super().filter(record)

    def emit(self, record: logging.LogRecord):
        try:
            self._client.write(self.format(record))
        except Exception:
            self.handleError(record)


class DailyRotatingFileHandler(TimedRotatingFileHandler):
    """Rotates at midnight; the finished file becomes ``<base>_<date><ext>``."""

    def __init__(self, filename: str, utc: bool = True, encoding: str = "utf-8"):
        super().__init__(filename, when="midnight", backupCount=0, encoding=encoding, utc=utc)
        self.suffix = FILE_DATE_FORMAT
        self.namer = self._dated_name

    def _dated_name(self, default_name: str) -> str:
        # default_name is "<baseFilename>.<date>"
        date = default_name[len(self.baseFilename) + 1:]
        directory, filename = os.path.split(self.baseFilename)
        base, ext = os.path.splitext(filename)
        return os.path.join(directory, f"{base}_{date}{ext}")


def _as_handler(output, utc: bool) -> logging.Handler:
    if isinstance(output, logging.Handler):
        return output
    if isinstance(output, LokiClient):
        return LokiHandler(output, utc=utc)
    return logging.StreamHandler(output)


def new_logger(
    outputs: Iterable,
    level="debug",
    json_output: bool = True,
    utc: bool = True,
    name: str = DEFAULT_LOGGER_NAME,
) -> logging.Logger:
    """Build a logger writing to every output.

    *outputs* may hold logging handlers, LokiClient instances or file-like
    streams. *level* is a level name or a DynamicLevel shared with other
    loggers. The logger does not propagate to the root logger.
    """
    logger = logging.getLogger(name)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    for old in [f for f in logger.filters if isinstance(f, DynamicLevel)]:
        logger.removeFilter(old)
    if isinstance(level, DynamicLevel):
        logger.setLevel(logging.DEBUG)
        logger.addFilter(level)
    else:
        logger.setLevel(parse_level(level))
    logger.propagate = False

    formatter = StructuredFormatter(json_output=json_output, utc=utc)
    for output in outputs:
        handler = _as_handler(output, utc)
        if not isinstance(handler, LokiHandler):
            handler.setFormatter(formatter)
        logger.addHandler(handler)
    return logger


def new_console_logger(
    level: str = "info", json_output: bool = False, utc: bool = True, name: str = DEFAULT_LOGGER_NAME
) -> logging.Logger:
    return new_logger([sys.stdout], level, json_output, utc, name)


def new_file_logger(
    path: str,
    level: str = "info",
    json_output: bool = True,
    utc: bool = True,
    verbose: bool = False,
    name: str = DEFAULT_LOGGER_NAME,
) -> tuple[logging.Logger, Callable[[], None]]:
    """Logger writing to a day-rotated file (and stdout when *verbose*).

    Returns the logger and a callable that closes the file.
    """
    file_handler = DailyRotatingFileHandler(path, utc=utc)
    outputs: list = [file_handler]
    if verbose:
        outputs.append(sys.stdout)
    logger = new_logger(outputs, level, json_output, utc, name)

    def close():
        logger.removeHandler(file_handler)
        file_handler.close()

    return logger, close
