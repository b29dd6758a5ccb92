"""Bounded ingestion queue shared by producers and the batch aggregator.

A monitor-protected FIFO of LogEntry objects with room for two out-of-band
signals: a timer tick posted by the ticker thread and the one-shot close.
The single consumer reacts to whichever of {entry, tick, close} is ready.
"""

import threading
import time
from collections import deque
from typing import Optional, Union

from lokilog.models import LogEntry


class _Signal:
    def __init__(self, name: str):
        self._name = name

    def __repr__(self):
        return self._name


TICK = _Signal("TICK")
CLOSED = _Signal("CLOSED")

Event = Union[LogEntry, _Signal]


class IngestionQueue:
    """Fixed-capacity FIFO with a timeout-bounded put."""

    def __init__(self, capacity: int = 1000):
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self._capacity = capacity
        self._entries: deque[LogEntry] = deque()
        self._cond = threading.Condition(threading.Lock())
        self._tick_pending = False
        self._closed = False

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def closed(self) -> bool:
        with self._cond:
            return self._closed

    def qsize(self) -> int:
        with self._cond:
            return len(self._entries)

    def put(self, entry: LogEntry, timeout: float) -> bool:
        """Append *entry*, waiting up to *timeout* seconds for free space.

        Returns False when the entry was dropped (still full, or closed).
        """
        deadline = time.monotonic() + max(timeout, 0.0)
        with self._cond:
            while not self._closed and len(self._entries) >= self._capacity:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                self._cond.wait(remaining)
            if self._closed:
                return False
            self._entries.append(entry)
            self._cond.notify_all()
            return True

    def post_tick(self):
        """Signal the consumer that the flush period elapsed."""
        with self._cond:
            self._tick_pending = True
            self._cond.notify_all()

    def close(self) -> bool:
        """Mark the queue closed. Returns True only for the first call."""
        with self._cond:
            if self._closed:
                return False
            self._closed = True
            self._cond.notify_all()
            return True

    def next_event(self, timeout: Optional[float] = None) -> Optional[Event]:
        """Block until an entry, TICK or CLOSED is available.

        CLOSED is only reported once every queued entry has been handed out.
        Returns None if *timeout* expires first.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while True:
                if self._tick_pending:
                    self._tick_pending = False
                    return TICK
                if self._entries:
                    entry = self._entries.popleft()
                    # wake producers waiting for space
                    self._cond.notify_all()
                    return entry
                if self._closed:
                    return CLOSED
                if deadline is None:
                    self._cond.wait()
                else:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        return None
                    self._cond.wait(remaining)
