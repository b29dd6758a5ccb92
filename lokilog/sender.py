"""Loki sender: pushes batches over HTTP with retry and jittered backoff."""

import base64
import logging
import random
import time
from typing import Optional

import httpx

from lokilog.config import BasicAuth, BearerAuth, ClientConfig
from lokilog.errors import SerializationError
from lokilog.metrics import MetricsCollector
from lokilog.models import LogEntry
from lokilog.serializer import serialize_push_request

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3
MAX_JITTER_MS = 400


class _RejectedError(Exception):
    """The endpoint answered with a non-2xx status."""


class _DeadlineExceeded(Exception):
    """The attempt ran past its send timeout."""


class LokiSender:
    """POSTs serialized batches to the push endpoint, retrying failed attempts."""

    def __init__(
        self,
        config: ClientConfig,
        metrics: Optional[MetricsCollector] = None,
        max_attempts: int = MAX_ATTEMPTS,
    ):
        self._config = config
        self._metrics = metrics or MetricsCollector()
        self._max_attempts = max_attempts
        self._owns_client = config.http_client is None
        self._client = config.http_client if config.http_client is not None else httpx.Client()
        self._headers = self._build_headers(config)

    @staticmethod
    def _build_headers(config: ClientConfig) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "User-Agent": config.user_agent,
        }
        auth = config.auth
        if isinstance(auth, BasicAuth):
            credentials = f"{auth.username}:{auth.password}".encode("utf-8")
            headers["Authorization"] = "Basic " + base64.b64encode(credentials).decode("ascii")
        elif isinstance(auth, BearerAuth):
            headers["Authorization"] = f"Bearer {auth.token}"
        return headers

    @property
    def headers(self) -> dict[str, str]:
        return dict(self._headers)

    def send(self, batch: list[LogEntry]) -> bool:
        """Send *batch* as one push request.

        Returns True once the endpoint accepts it, False after every attempt
        failed (or the batch could not be serialized). Either way the caller
        must not resend the batch.
        """
        if not batch:
            return True

        try:
            body = serialize_push_request(self._config.labels, batch)
        except SerializationError as exc:
            logger.error("Dropping batch of %d entries: %s", len(batch), exc)
            self._metrics.record_failed(len(batch))
            return False

        start = time.monotonic()
        last_error: Optional[Exception] = None
        for attempt in range(1, self._max_attempts + 1):
            try:
                self._post(body)
            except (httpx.HTTPError, _RejectedError, _DeadlineExceeded) as exc:
                last_error = exc
                if attempt < self._max_attempts:
                    delay = self._backoff_delay(attempt)
                    logger.warning(
                        "Push failed (attempt %d/%d): %s; retrying in %.3fs",
                        attempt,
                        self._max_attempts,
                        exc,
                        delay,
                    )
                    time.sleep(delay)
                continue

            self._metrics.record_batch(
                batch_size=len(batch),
                bytes_sent=len(body),
                send_time_ms=(time.monotonic() - start) * 1000,
            )
            logger.debug("Pushed batch of %d entries (%d bytes)", len(batch), len(body))
            return True

        logger.error(
            "Failed to send batch of %d entries after %d attempts: %s",
            len(batch),
            self._max_attempts,
            last_error,
        )
        self._metrics.record_failed(len(batch))
        return False

    def _post(self, body: bytes):
        """One attempt, bounded by a wall-clock deadline of ``send_timeout``.

        The response is streamed so the deadline is checked between chunks;
        a body trickling in slower than that fails the attempt.
        """
        deadline = time.monotonic() + self._config.send_timeout
        content = bytearray()
        with self._client.stream(
            "POST",
            self._config.push_url,
            content=body,
            headers=self._headers,
            timeout=self._config.send_timeout,
        ) as response:
            self._check_deadline(deadline)
            for chunk in response.iter_raw():
                content.extend(chunk)
                self._check_deadline(deadline)
        if not response.is_success:
            detail = bytes(content[:200]).decode("utf-8", "replace").strip()
            raise _RejectedError(
                f"server returned status {response.status_code} {response.reason_phrase}"
                + (f": {detail}" if detail else "")
            )

    def _check_deadline(self, deadline: float):
        if time.monotonic() >= deadline:
            raise _DeadlineExceeded(
                f"no complete response within {self._config.send_timeout}s"
            )

    @staticmethod
    def _backoff_delay(attempt: int) -> float:
        """Delay after failed attempt *attempt* (1-indexed).

        *attempt* seconds plus a jitter of 0-399 ms.
        """
        return attempt + random.randrange(MAX_JITTER_MS) / 1000

    def close(self):
        """Close the HTTP client if this sender created it."""
        if self._owns_client:
            self._client.close()
