"""Tests for the job event bus."""

from __future__ import annotations

import queue
import threading

import pytest

from dtf_rip.jobs.events import EventBus
from dtf_rip.jobs.models import JobEvent, JobStatus


def _event(job_id: str = "a", progress: int = 0, status: JobStatus = JobStatus.PROCESSING) -> JobEvent:
    return JobEvent(job_id=job_id, status=status, progress=progress)


class TestPullSubscription:
    def test_fifo_order(self) -> None:
        bus = EventBus()
        sub = bus.subscribe()
        for p in (0, 10, 30, 60, 80):
            bus.publish(_event(progress=p))
        assert [e.progress for e in sub.drain()] == [0, 10, 30, 60, 80]

    def test_every_subscriber_gets_every_event(self) -> None:
        bus = EventBus()
        subs = [bus.subscribe() for _ in range(3)]
        assert bus.publish(_event()) == 3
        assert all(len(s.drain()) == 1 for s in subs)

    def test_job_filter(self) -> None:
        bus = EventBus()
        sub = bus.subscribe(job_id="b")
        bus.publish(_event("a"))
        bus.publish(_event("b", 10))
        assert [(e.job_id, e.progress) for e in sub.drain()] == [("b", 10)]

    def test_get_timeout(self) -> None:
        sub = EventBus().subscribe()
        with pytest.raises(queue.Empty):
            sub.get(timeout=0.01)

    def test_iter_until(self) -> None:
        bus = EventBus()
        sub = bus.subscribe()
        bus.publish(_event(progress=80))
        bus.publish(_event(progress=100, status=JobStatus.PROCESSED))
        bus.publish(_event(progress=0, status=JobStatus.PRINTING))
        seen = list(sub.iter_until(lambda e: e.status is JobStatus.PROCESSED, timeout=1.0))
        assert [e.progress for e in seen] == [80, 100]
        assert sub.get(timeout=0.1).status is JobStatus.PRINTING

    def test_full_queue_drops(self, caplog: pytest.LogCaptureFixture) -> None:
        bus = EventBus()
        sub = bus.subscribe(maxsize=2)
        with caplog.at_level("WARNING", logger="dtf_rip.jobs.events"):
            accepted = [bus.publish(_event(progress=p)) for p in (1, 2, 3)]
        assert accepted == [1, 1, 0]
        assert [e.progress for e in sub.drain()] == [1, 2]
        assert "dropped" in caplog.text

    def test_closed_subscription_receives_nothing(self) -> None:
        bus = EventBus()
        sub = bus.subscribe()
        sub.close()
        assert bus.publish(_event()) == 0
        assert sub.drain() == []


class TestHandlerSubscription:
    def test_handler_called_in_order(self) -> None:
        bus = EventBus()
        seen: list[int] = []
        sub = bus.subscribe(lambda e: seen.append(e.progress))
        for p in range(20):
            bus.publish(_event(progress=p))
        sub.join()
        sub.close()
        assert seen == list(range(20))

    def test_runs_off_publisher_thread(self) -> None:
        bus = EventBus()
        threads: list[str] = []
        sub = bus.subscribe(lambda e: threads.append(threading.current_thread().name))
        bus.publish(_event())
        sub.join()
        sub.close()
        assert threads == ["event-subscriber"]

    def test_handler_errors_are_isolated(self, caplog: pytest.LogCaptureFixture) -> None:
        bus = EventBus()
        good: list[int] = []

        def bad(event: JobEvent) -> None:
            raise RuntimeError("subscriber bug")

        bad_sub = bus.subscribe(bad)
        good_sub = bus.subscribe(lambda e: good.append(e.progress))
        with caplog.at_level("ERROR", logger="dtf_rip.jobs.events"):
            bus.publish(_event(progress=5))
            bus.publish(_event(progress=6))
            bad_sub.join()
            good_sub.join()
        assert good == [5, 6]
        assert "subscriber bug" in caplog.text
        bus.close()

    def test_get_not_available(self) -> None:
        sub = EventBus().subscribe(lambda e: None)
        with pytest.raises(RuntimeError):
            sub.get(timeout=0)
        sub.close()
