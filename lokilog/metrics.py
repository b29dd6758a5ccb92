"""Metrics collector: thread-safe counters for batch shipping to Loki."""

import threading
import time


class MetricsCollector:
    """Counts sent, failed and dropped entries for one client."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._batches_sent: int = 0
        self._entries_sent: int = 0
        self._bytes_sent: int = 0
        self._batches_failed: int = 0
        self._entries_failed: int = 0
        self._entries_dropped: int = 0
        self._send_times: list[float] = []
        self._flush_triggers: dict = {"size": 0, "timer": 0, "drain": 0}
        self._start_time = time.monotonic()

    def record_batch(
        self,
        batch_size: int,
        bytes_sent: int,
        send_time_ms: float,
    ) -> None:
        """Record a batch the endpoint accepted.

        Args:
            batch_size: Number of log entries in the batch.
            bytes_sent: Serialized request body size in bytes.
            send_time_ms: Time spent sending, retries included, in milliseconds.
        """
        with self._lock:
            self._batches_sent += 1
            self._entries_sent += batch_size
            self._bytes_sent += bytes_sent
            self._send_times.append(send_time_ms)

    def record_failed(self, batch_size: int) -> None:
        """Record a batch discarded after exhausting its attempts."""
        with self._lock:
            self._batches_failed += 1
            self._entries_failed += batch_size

    def record_dropped(self) -> None:
        """Record one entry dropped because the queue stayed full."""
        with self._lock:
            self._entries_dropped += 1

    def record_flush(self, trigger: str) -> None:
        with self._lock:
            self._flush_triggers[trigger] = self._flush_triggers.get(trigger, 0) + 1

    @property
    def entries_dropped(self) -> int:
        with self._lock:
            return self._entries_dropped

    def snapshot(self) -> dict:
        """Return a point-in-time snapshot of all collected metrics."""
        with self._lock:
            send_times = list(self._send_times)
            avg_send = sum(send_times) / len(send_times) if send_times else 0.0

            return {
                "batches_sent": self._batches_sent,
                "entries_sent": self._entries_sent,
                "bytes_sent": self._bytes_sent,
                "batches_failed": self._batches_failed,
                "entries_failed": self._entries_failed,
                "entries_dropped": self._entries_dropped,
                "avg_send_time_ms": avg_send,
                "p95_send_time_ms": self._percentile(send_times, 95),
                "flush_triggers": dict(self._flush_triggers),
                "uptime_seconds": time.monotonic() - self._start_time,
            }

    @staticmethod
    def _percentile(data: list, pct: float) -> float:
        """Compute an interpolated percentile from a list of numeric values.

        Args:
            data: List of numeric values (will be sorted internally).
            pct: Desired percentile (0-100).

        Returns:
            Interpolated value at the given percentile, or 0.0 if data is empty.
        """
        if not data:
            return 0.0

        sorted_data = sorted(data)
        n = len(sorted_data)

        if n == 1:
            return float(sorted_data[0])

        idx = (pct / 100) * (n - 1)
        lower = int(idx)
        upper = lower + 1
        fraction = idx - lower

        if upper >= n:
            return float(sorted_data[-1])

        return float(sorted_data[lower] + fraction * (sorted_data[upper] - sorted_data[lower]))
