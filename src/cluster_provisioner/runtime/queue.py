"""Delayed, de-duplicating, per-key work queue.

Keys are object keys (``namespace/name``). A key is handed out at most
once at a time: if it becomes due again while a worker holds it, it is
parked and re-queued when ``done()`` is called. Scheduling the same key
several times keeps only the earliest fire time.

Usage::

    queue = WorkQueue()
    queue.add_after("ns1/demo", 2.0)

    key = queue.get()          # None until the key is due
    if key is not None:
        try:
            ...                # sync the object
            queue.forget(key)
        except Exception:
            queue.add_rate_limited(key)
        finally:
            queue.done(key)
"""

from __future__ import annotations

import heapq
import itertools
import threading
import time
from collections.abc import Callable


class WorkQueue:
    """Priority queue keyed by fire time feeding a per-key serialized queue.

    Thread-safe via a single lock. ``_clock`` is injectable for tests.
    """

    def __init__(
        self,
        base_delay: float = 0.5,
        max_delay: float = 60.0,
        _clock: Callable[[], float] | None = None,
    ) -> None:
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._clock = _clock or time.monotonic
        self._lock = threading.Lock()
        self._counter = itertools.count()
        self._heap: list[tuple[float, int, str]] = []
        self._scheduled: dict[str, float] = {}
        self._processing: set[str] = set()
        self._parked: set[str] = set()
        self._failures: dict[str, int] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._scheduled) + len(self._parked)

    def add(self, key: str) -> None:
        """Queue *key* for immediate processing."""
        self.add_after(key, 0.0)

    def add_after(self, key: str, delay: float) -> None:
        """Queue *key* to become due *delay* seconds from now."""
        with self._lock:
            self._schedule(key, self._clock() + max(delay, 0.0))

    def add_rate_limited(self, key: str) -> float:
        """Re-queue a failed key with exponential backoff; return the delay."""
        with self._lock:
            failures = self._failures.get(key, 0)
            self._failures[key] = failures + 1
            delay = min(self._base_delay * (2 ** failures), self._max_delay)
            self._schedule(key, self._clock() + delay)
        return delay

    def forget(self, key: str) -> None:
        """Reset the backoff of *key* after a successful sync."""
        with self._lock:
            self._failures.pop(key, None)

    def num_requeues(self, key: str) -> int:
        with self._lock:
            return self._failures.get(key, 0)

    def get(self) -> str | None:
        """Return the next due key not currently being processed, or ``None``."""
        with self._lock:
            now = self._clock()
            while self._heap and self._heap[0][0] <= now:
                fire_at, _, key = heapq.heappop(self._heap)
                if self._scheduled.get(key) != fire_at:
                    continue
                del self._scheduled[key]
                if key in self._processing:
                    self._parked.add(key)
                    continue
                self._processing.add(key)
                return key
            return None

    def done(self, key: str) -> None:
        """Release *key*; a parked re-queue becomes due immediately."""
        with self._lock:
            self._processing.discard(key)
            if key in self._parked:
                self._parked.discard(key)
                self._schedule(key, self._clock())

    def next_due_in(self) -> float | None:
        """Seconds until the earliest scheduled key is due, or ``None`` if idle."""
        with self._lock:
            if not self._scheduled:
                return None
            return max(min(self._scheduled.values()) - self._clock(), 0.0)

    def _schedule(self, key: str, fire_at: float) -> None:
        current = self._scheduled.get(key)
        if current is not None and current <= fire_at:
            return
        self._scheduled[key] = fire_at
        heapq.heappush(self._heap, (fire_at, next(self._counter), key))
