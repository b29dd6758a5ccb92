"""Batch aggregator: single worker that drains the queue into batches."""

import enum
import logging
import threading
from typing import Callable, Optional

from lokilog.ingest_queue import CLOSED, TICK, IngestionQueue
from lokilog.metrics import MetricsCollector
from lokilog.models import LogEntry

logger = logging.getLogger(__name__)


class AggregatorState(enum.Enum):
    RUNNING = "running"
    DRAINING = "draining"
    STOPPED = "stopped"


class Ticker:
    """Posts a TICK into the queue every *period* seconds until stopped."""

    def __init__(self, queue: IngestionQueue, period: float):
        self._queue = queue
        self._period = period
        self._stop_event = threading.Event()
        self._thread = threading.Thread(target=self._run, name="lokilog-ticker", daemon=True)

    def start(self):
        self._thread.start()

    def stop(self):
        self._stop_event.set()
        if self._thread.is_alive():
            self._thread.join(timeout=5)

    def _run(self):
        while not self._stop_event.wait(timeout=self._period):
            self._queue.post_tick()


class BatchAggregator:
    """Accumulates entries and hands full (or due) batches to *on_flush*.

    Flushes happen on the worker thread, one at a time: the next batch is not
    started until *on_flush* returns. A size flush fires once the batch holds
    *batch_size* entries, a timer flush on every TICK, and a final flush when
    the queue reports CLOSED.
    """

    def __init__(
        self,
        queue: IngestionQueue,
        batch_size: int,
        period: float,
        on_flush: Callable[[list[LogEntry]], object],
        metrics: Optional[MetricsCollector] = None,
    ):
        self._queue = queue
        self._batch_size = batch_size
        self._on_flush = on_flush
        self._metrics = metrics or MetricsCollector()
        self._ticker = Ticker(queue, period)
        self._state = AggregatorState.RUNNING
        self._flush_count = 0
        self._thread = threading.Thread(
            target=self._run, name="lokilog-aggregator", daemon=True
        )

    @property
    def state(self) -> AggregatorState:
        return self._state

    @property
    def flush_count(self) -> int:
        """Number of non-empty batches handed to the flush callback."""
        return self._flush_count

    def start(self):
        self._thread.start()
        self._ticker.start()

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for the worker to exit. Returns True once it has."""
        self._thread.join(timeout)
        if self._thread.is_alive():
            return False
        self._ticker.stop()
        return True

    def _run(self):
        batch: list[LogEntry] = []
        while True:
            event = self._queue.next_event()
            if event is CLOSED:
                self._state = AggregatorState.DRAINING
                self._flush(batch, "drain")
                break
            if event is TICK:
                self._flush(batch, "timer")
                batch = []
                continue

            batch.append(event)
            if len(batch) >= self._batch_size:
                self._flush(batch, "size")
                batch = []

        self._state = AggregatorState.STOPPED
        logger.debug("Batch aggregator stopped after %d flushes", self._flush_count)

    def _flush(self, batch: list[LogEntry], trigger: str):
        if not batch:
            return
        self._flush_count += 1
        self._metrics.record_flush(trigger)
        try:
            self._on_flush(batch)
        except Exception:
            # keep the worker alive; the batch is discarded like any failed send
            logger.exception("Flush of %d entries failed", len(batch))
