"""Tests for the structured logger front end."""

import io
import json
import logging
import os
from datetime import datetime, timedelta, timezone

import pytest

from lokilog.logx import (
    DailyRotatingFileHandler,
    DynamicLevel,
    LokiHandler,
    StructuredFormatter,
    error_fields,
    format_time_milli,
    new_console_logger,
    new_file_logger,
    new_logger,
    parse_level,
    with_fields,
)
from lokilog.normalizer import normalize_record


class FakeClient:
    def __init__(self):
        self.writes: list[str] = []

    def write(self, data):
        self.writes.append(data)
        return len(data)


def _json_logger(name: str, level="debug"):
    stream = io.StringIO()
    logger = new_logger([stream], level=level, name=name)
    return logger, stream


def _lines(stream: io.StringIO) -> list[dict]:
    return [json.loads(line) for line in stream.getvalue().splitlines()]


class TestParseLevel:
    @pytest.mark.parametrize(
        "value, expected",
        [
            ("debug", logging.DEBUG),
            ("Info", logging.INFO),
            (" WARN ", logging.WARNING),
            ("warning", logging.WARNING),
            ("error", logging.ERROR),
            ("verbose", logging.DEBUG),
        ],
    )
    def test_levels(self, value, expected):
        assert parse_level(value) == expected


class TestFormatTime:
    def test_utc(self):
        dt = datetime(2024, 1, 15, 8, 23, 45, 123456, tzinfo=timezone.utc)
        assert format_time_milli(dt) == "2024-01-15T08:23:45.123Z"

    def test_offset(self):
        tz = timezone(timedelta(hours=-5, minutes=-30))
        dt = datetime(2024, 1, 15, 8, 23, 45, 7000, tzinfo=tz)
        assert format_time_milli(dt) == "2024-01-15T08:23:45.007-05:30"


class TestStructuredFormatter:
    def test_json_fields(self):
        logger, stream = _json_logger("test-logx-json")
        logger.info("hello %s", "world", extra={"user": "alice"})

        (line,) = _lines(stream)
        assert line["msg"] == "hello world"
        assert line["level"] == "info"
        assert line["user"] == "alice"
        assert line["time"].endswith("Z")
        assert line["caller"].split(":")[0].endswith("test_logx.py")

    def test_output_is_accepted_by_normalizer(self):
        logger, stream = _json_logger("test-logx-normalize")
        logger.warning("disk almost full", extra={"pct": 93})

        entry = normalize_record(stream.getvalue().strip())
        assert entry.message == "disk almost full"
        assert entry.metadata["level"] == "warning"
        assert entry.metadata["pct"] == "93"

    def test_local_time_is_parseable(self):
        record = logging.LogRecord("x", logging.INFO, __file__, 10, "hi", (), None)
        line = StructuredFormatter(json_output=True, utc=False).format(record)
        entry = normalize_record(line)
        assert abs(int(entry.timestamp_nanos) // 1_000_000 - int(record.created * 1000)) <= 1

    def test_text_output(self):
        record = logging.LogRecord("x", logging.ERROR, __file__, 10, "two words", (), None)
        text = StructuredFormatter(json_output=False).format(record)
        assert "level=error" in text
        assert 'msg="two words"' in text

    def test_exception_included(self):
        logger, stream = _json_logger("test-logx-exc")
        try:
            raise ValueError("bad")
        except ValueError:
            logger.exception("failed")
        (line,) = _lines(stream)
        assert "ValueError: bad" in line["exception"]

    def test_caller_outside_root_uses_basename(self):
        record = logging.LogRecord("x", logging.INFO, "/elsewhere/pkg/mod.py", 7, "m", (), None)
        fields = StructuredFormatter(root="/project").fields(record)
        assert fields["caller"] == "mod.py:7"


class TestLoggerOptions:
    def test_level_filtering(self):
        logger, stream = _json_logger("test-logx-level", level="warn")
        logger.info("hidden")
        logger.warning("shown")
        assert [line["msg"] for line in _lines(stream)] == ["shown"]

    def test_dynamic_level(self):
        dynamic = DynamicLevel(logging.ERROR)
        stream = io.StringIO()
        logger = new_logger([stream], level=dynamic, name="test-logx-dynamic")

        logger.info("hidden")
        dynamic.set_level("debug")
        logger.info("shown")

        assert [line["msg"] for line in _lines(stream)] == ["shown"]
        assert dynamic.level == logging.DEBUG
        assert dynamic.enabled(logging.INFO)

    def test_rebuild_replaces_handlers(self):
        first = io.StringIO()
        second = io.StringIO()
        new_logger([first], name="test-logx-rebuild")
        logger = new_logger([second], name="test-logx-rebuild")
        logger.info("x")
        assert first.getvalue() == ""
        assert second.getvalue() != ""

    def test_with_fields_merges_extra(self):
        logger, stream = _json_logger("test-logx-fields")
        child = with_fields(logger, service="api").with_fields(region="eu")
        child.info("x", extra={"region": "us"})
        (line,) = _lines(stream)
        assert line["service"] == "api"
        assert line["region"] == "us"

    def test_error_fields(self):
        assert error_fields(None) == {}
        assert error_fields(ValueError("boom")) == {"error": "boom"}

    def test_console_logger_writes_stdout(self, capsys):
        logger = new_console_logger("info", name="test-logx-console")
        logger.info("to console")
        assert "to console" in capsys.readouterr().out


class TestLokiHandler:
    def test_writes_json_records(self):
        client = FakeClient()
        logger = new_logger([LokiHandler(client)], name="test-logx-loki")
        logger.info("shipped", extra={"service": "api"})

        (data,) = client.writes
        entry = normalize_record(data)
        assert entry.message == "shipped"
        assert "service" not in entry.metadata

    def test_skips_own_diagnostics(self):
        handler = LokiHandler(FakeClient())
        record = logging.LogRecord("lokilog.client", logging.WARNING, __file__, 1, "m", (), None)
        assert not handler.filter(record)

    def test_write_errors_handled(self, monkeypatch):
        class BrokenClient:
            def write(self, data):
                raise RuntimeError("closed")

        handled = []
        handler = LokiHandler(BrokenClient())
        monkeypatch.setattr(handler, "handleError", handled.append)
        record = logging.LogRecord("app", logging.INFO, __file__, 1, "m", (), None)
        handler.emit(record)
        assert handled == [record]


class TestFileLogger:
    def test_writes_to_file(self, tmp_path):
        path = tmp_path / "app.log"
        logger, close = new_file_logger(str(path), "debug", name="test-logx-file")
        logger.info("Test")
        close()

        (line,) = [json.loads(x) for x in path.read_text().splitlines()]
        assert line["msg"] == "Test"

    def test_verbose_also_writes_stdout(self, tmp_path, capsys):
        logger, close = new_file_logger(
            str(tmp_path / "app.log"), "info", verbose=True, name="test-logx-verbose"
        )
        logger.info("both")
        close()
        assert "both" in capsys.readouterr().out

    def test_rotated_name_carries_date(self, tmp_path):
        path = tmp_path / "service.log"
        handler = DailyRotatingFileHandler(str(path))
        try:
            rotated = handler.rotation_filename(f"{handler.baseFilename}.2024-01-15")
        finally:
            handler.close()
        assert rotated == os.path.join(str(tmp_path), "service_2024-01-15.log")

    def test_rollover_keeps_previous_day(self, tmp_path):
        path = tmp_path / "service.log"
        handler = DailyRotatingFileHandler(str(path), utc=True)
        try:
            handler.emit(logging.LogRecord("x", logging.INFO, __file__, 1, "old", (), None))
            handler.doRollover()
            handler.emit(logging.LogRecord("x", logging.INFO, __file__, 1, "new", (), None))
        finally:
            handler.close()

        rotated = [p.name for p in tmp_path.iterdir() if p.name != "service.log"]
        assert len(rotated) == 1
        assert rotated[0].startswith("service_") and rotated[0].endswith(".log")
        assert "old" in (tmp_path / rotated[0]).read_text()
        assert (tmp_path / "service.log").read_text().strip() == "new"
