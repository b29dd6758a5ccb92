"""Tests for the metrics collector module."""

import threading

import pytest

from lokilog.metrics import MetricsCollector


def test_record_and_snapshot():
    """Record sent, failed and dropped traffic and verify the totals."""
    mc = MetricsCollector()

    mc.record_batch(batch_size=10, bytes_sent=500, send_time_ms=12.0)
    mc.record_batch(batch_size=20, bytes_sent=1000, send_time_ms=24.0)
    mc.record_failed(batch_size=5)
    mc.record_dropped()
    mc.record_dropped()
    mc.record_flush("size")
    mc.record_flush("timer")
    mc.record_flush("drain")

    snap = mc.snapshot()

    assert snap["batches_sent"] == 2
    assert snap["entries_sent"] == 30
    assert snap["bytes_sent"] == 1500
    assert snap["batches_failed"] == 1
    assert snap["entries_failed"] == 5
    assert snap["entries_dropped"] == 2
    assert snap["avg_send_time_ms"] == pytest.approx(18.0)
    assert snap["flush_triggers"] == {"size": 1, "timer": 1, "drain": 1}
    assert mc.entries_dropped == 2


def test_empty_snapshot():
    """Snapshot without any records should return all zeros."""
    snap = MetricsCollector().snapshot()

    assert snap["batches_sent"] == 0
    assert snap["entries_sent"] == 0
    assert snap["entries_dropped"] == 0
    assert snap["avg_send_time_ms"] == 0.0
    assert snap["p95_send_time_ms"] == 0.0
    assert snap["flush_triggers"] == {"size": 0, "timer": 0, "drain": 0}
    assert snap["uptime_seconds"] >= 0


def test_p95_send_time():
    mc = MetricsCollector()
    for i in range(1, 101):
        mc.record_batch(batch_size=1, bytes_sent=10, send_time_ms=float(i))

    # index = 0.95 * 99 = 94.05 -> between 95 and 96
    assert mc.snapshot()["p95_send_time_ms"] == pytest.approx(95.05)


def test_thread_safety():
    mc = MetricsCollector()

    def worker():
        for _ in range(1000):
            mc.record_dropped()

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert mc.snapshot()["entries_dropped"] == 4000
