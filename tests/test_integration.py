"""End-to-end tests against a real loopback HTTP push endpoint."""

import base64
import json
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest

from lokilog.client import new_loki_client
from lokilog.config import ClientConfigBuilder
from lokilog.logx import new_logger, with_fields


class _PushHandler(BaseHTTPRequestHandler):
    def do_POST(self):
        length = int(self.headers.get("Content-Length", 0))
        body = self.rfile.read(length)
        self.server.received.append(
            {
                "path": self.path,
                "headers": {k.lower(): v for k, v in self.headers.items()},
                "body": json.loads(body),
            }
        )
        self.send_response(self.server.status)
        self.end_headers()

    def log_message(self, format, *args):
        pass


@pytest.fixture
def loki_server():
    """Run a push endpoint on an ephemeral port; yield the server."""
    server = ThreadingHTTPServer(("127.0.0.1", 0), _PushHandler)
    server.received = []
    server.status = 204
    t = threading.Thread(target=server.serve_forever, daemon=True)
    t.start()
    yield server
    server.shutdown()
    server.server_close()


def _builder(server) -> ClientConfigBuilder:
    host, port = server.server_address
    return (
        ClientConfigBuilder(host, port)
        .with_labels({"app": "my_app", "service_name": "my_service"})
        .with_period(60.0)
        .with_send_timeout(3.0)
    )


def test_logger_to_loki_with_basic_auth(loki_server):
    config = _builder(loki_server).with_basic_auth("johnDoe", "12345").build()
    client, close = new_loki_client(config)
    logger = with_fields(
        new_logger([client], level="debug", name="test-integration-basic"),
        service="my_service",
    )

    logger.debug("This a debug message")
    logger.info("This is a test")
    logger.warning("This is a warning")
    logger.error("This is an error", extra={"code": 42})
    close()

    assert len(loki_server.received) == 1
    request = loki_server.received[0]
    assert request["path"] == "/loki/api/v1/push"
    expected = base64.b64encode(b"johnDoe:12345").decode("ascii")
    assert request["headers"]["authorization"] == f"Basic {expected}"

    stream = request["body"]["streams"][0]
    assert stream["stream"] == {"app": "my_app", "service_name": "my_service"}
    lines = [value[1] for value in stream["values"]]
    assert lines == [
        "This a debug message",
        "This is a test",
        "This is a warning",
        "This is an error",
    ]
    levels = [value[2]["level"] for value in stream["values"]]
    assert levels == ["debug", "info", "warning", "error"]
    assert stream["values"][3][2]["code"] == "42"
    assert all("service" not in value[2] for value in stream["values"])


def test_bearer_token(loki_server):
    config = _builder(loki_server).with_bearer_token("myToken").build()
    client, close = new_loki_client(config)
    client.write(b'{"time": "2024-01-15T08:23:45.123Z", "msg": "hello"}')
    close()

    assert loki_server.received[0]["headers"]["authorization"] == "Bearer myToken"


def test_rejected_push_is_reported(loki_server, monkeypatch, caplog):
    monkeypatch.setattr(
        "lokilog.sender.LokiSender._backoff_delay", staticmethod(lambda attempt: 0.0)
    )
    loki_server.status = 400
    client, close = new_loki_client(_builder(loki_server).build())
    with caplog.at_level("ERROR", logger="lokilog.sender"):
        client.write(b'{"time": "2024-01-15T08:23:45.123Z", "msg": "hello"}')
        close()

    assert len(loki_server.received) == 3
    assert any("400" in r.getMessage() for r in caplog.records if r.levelname == "ERROR")
