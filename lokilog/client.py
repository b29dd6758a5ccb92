"""Loki client: wires normalizer, queue, aggregator, sender and metrics."""

import logging
import threading
import time
from typing import Callable, Optional

from lokilog.aggregator import BatchAggregator
from lokilog.config import ClientConfig
from lokilog.ingest_queue import IngestionQueue
from lokilog.metrics import MetricsCollector
from lokilog.normalizer import normalize_record
from lokilog.sender import LokiSender

logger = logging.getLogger(__name__)


class LokiClient:
    """Write-style sink that ships structured JSON records to Loki in batches.

    ``write`` is safe to call from any thread and blocks for at most
    ``config.write_timeout``. Records are pushed by a background aggregator;
    delivery failures are logged, never raised to the writer.
    """

    def __init__(
        self,
        config: ClientConfig,
        sender: Optional[LokiSender] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self._config = config
        self._metrics = metrics or MetricsCollector()
        self._sender = sender or LokiSender(config, self._metrics)
        self._queue = IngestionQueue(config.buffer_size)
        self._aggregator = BatchAggregator(
            self._queue,
            batch_size=config.batch_size,
            period=config.period,
            on_flush=self._sender.send,
            metrics=self._metrics,
        )
        self._close_lock = threading.Lock()
        self._closed = False
        self._aggregator.start()
        logger.debug(
            "Loki client started: url=%s, batch_size=%d, period=%.1fs, buffer_size=%d",
            config.push_url,
            config.batch_size,
            config.period,
            config.buffer_size,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def write(self, data) -> int:
        """Normalize one serialized record and enqueue it.

        Raises a NormalizationError for malformed input. A record dropped
        because the queue stayed full is reported to the log and still
        counts as written.
        """
        entry = normalize_record(data)
        if not self._queue.put(entry, self._config.write_timeout):
            self._metrics.record_dropped()
            if self._queue.closed:
                logger.warning("Loki client is closed, dropping log")
            else:
                logger.warning("Loki buffer is full, dropping log")
        return len(data)

    def close(self):
        """Stop accepting records, drain the queue and wait for the last push.

        Safe to call repeatedly or concurrently; the drain runs once and
        every caller returns only after it finished.
        """
        with self._close_lock:
            if not self._closed:
                self._closed = True
                if self._config.close_grace > 0:
                    time.sleep(self._config.close_grace)
                self._queue.close()
                self._aggregator.join()
                self._sender.close()
                logger.info("Loki client metrics: %s", self._metrics.snapshot())

    def __enter__(self) -> "LokiClient":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    @property
    def config(self) -> ClientConfig:
        return self._config

    @property
    def metrics(self) -> MetricsCollector:
        return self._metrics

    @property
    def pending_count(self) -> int:
        return self._queue.qsize()

    @property
    def closed(self) -> bool:
        return self._closed


def new_loki_client(config: ClientConfig) -> tuple[LokiClient, Callable[[], None]]:
    """Start a client and return it with its shutdown handle."""
    client = LokiClient(config)
    return client, client.close
