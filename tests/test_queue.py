"""Tests for the delayed per-key work queue."""

from __future__ import annotations

from cluster_provisioner.runtime.queue import WorkQueue


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def _queue(**kwargs: float) -> tuple[WorkQueue, FakeClock]:
    clock = FakeClock()
    return WorkQueue(_clock=clock, **kwargs), clock


class TestDelays:
    def test_immediate(self) -> None:
        queue, _ = _queue()
        queue.add("ns1/a")
        assert queue.get() == "ns1/a"
        assert queue.get() is None

    def test_not_due_until_delay_elapses(self) -> None:
        queue, clock = _queue()
        queue.add_after("ns1/a", 2.0)
        assert queue.get() is None
        assert queue.next_due_in() == 2.0
        clock.advance(2.0)
        assert queue.get() == "ns1/a"

    def test_fire_order(self) -> None:
        queue, clock = _queue()
        queue.add_after("ns1/late", 5.0)
        queue.add_after("ns1/early", 1.0)
        clock.advance(10)
        assert [queue.get(), queue.get()] == ["ns1/early", "ns1/late"]

    def test_idle(self) -> None:
        queue, _ = _queue()
        assert queue.next_due_in() is None
        assert len(queue) == 0


class TestDedupe:
    def test_same_key_once(self) -> None:
        queue, _ = _queue()
        queue.add("ns1/a")
        queue.add("ns1/a")
        assert len(queue) == 1
        assert queue.get() == "ns1/a"
        assert queue.get() is None

    def test_earliest_fire_time_wins(self) -> None:
        queue, clock = _queue()
        queue.add_after("ns1/a", 5.0)
        queue.add_after("ns1/a", 1.0)
        clock.advance(1.0)
        assert queue.get() == "ns1/a"
        clock.advance(10)
        assert queue.get() is None

    def test_later_schedule_does_not_delay(self) -> None:
        queue, _ = _queue()
        queue.add("ns1/a")
        queue.add_after("ns1/a", 30.0)
        assert queue.get() == "ns1/a"


class TestPerKeySerialization:
    def test_key_parked_while_processing(self) -> None:
        queue, _ = _queue()
        queue.add("ns1/a")
        assert queue.get() == "ns1/a"
        queue.add("ns1/a")
        assert queue.get() is None
        queue.done("ns1/a")
        assert queue.get() == "ns1/a"

    def test_other_keys_proceed(self) -> None:
        queue, _ = _queue()
        queue.add("ns1/a")
        queue.add("ns1/b")
        assert queue.get() == "ns1/a"
        assert queue.get() == "ns1/b"

    def test_done_without_requeue(self) -> None:
        queue, _ = _queue()
        queue.add("ns1/a")
        queue.get()
        queue.done("ns1/a")
        assert queue.get() is None


class TestBackoff:
    def test_exponential(self) -> None:
        queue, _ = _queue(base_delay=0.5, max_delay=60.0)
        assert [queue.add_rate_limited("ns1/a") for _ in range(4)] == [0.5, 1.0, 2.0, 4.0]
        assert queue.num_requeues("ns1/a") == 4

    def test_capped(self) -> None:
        queue, _ = _queue(base_delay=1.0, max_delay=5.0)
        delays = [queue.add_rate_limited("ns1/a") for _ in range(6)]
        assert delays[-1] == 5.0

    def test_forget_resets(self) -> None:
        queue, _ = _queue(base_delay=1.0)
        queue.add_rate_limited("ns1/a")
        queue.add_rate_limited("ns1/a")
        queue.forget("ns1/a")
        assert queue.num_requeues("ns1/a") == 0
        assert queue.add_rate_limited("ns1/a") == 1.0

    def test_rate_limited_key_becomes_due(self) -> None:
        queue, clock = _queue(base_delay=2.0)
        queue.add_rate_limited("ns1/a")
        assert queue.get() is None
        clock.advance(2.0)
        assert queue.get() == "ns1/a"
