"""Fan-out publish/subscribe for job progress events.

Every subscriber owns a FIFO queue, so it sees one job's events in the
order they were generated.  Publishing only enqueues: a slow subscriber
delays nobody, and a subscriber with a bounded queue that is full loses
the event (logged) rather than blocking the pipeline.

Two ways to consume:
    - ``subscribe(handler)``: a dedicated daemon thread calls *handler*
      for each event; handler exceptions are logged and swallowed.
    - ``subscribe()``: pull events with ``Subscription.get``.

Transports (websocket, SSE, CLI printer) are just subscribers.
"""

from __future__ import annotations

import logging
import queue
import threading
from typing import Callable, Iterator

from dtf_rip.jobs.models import JobEvent

logger = logging.getLogger(__name__)

EventHandler = Callable[[JobEvent], None]

_STOP = object()


class Subscription:
    """One subscriber's ordered event queue.

    Parameters
    ----------
    bus : EventBus
        Owning bus.
    handler : EventHandler | None
        Called on a delivery thread; ``None`` for pull-style consumption.
    job_id : str | None
        Only receive events for this job.
    maxsize : int
        Queue bound; 0 is unbounded.
    """

    def __init__(
        self,
        bus: "EventBus",
        handler: EventHandler | None = None,
        job_id: str | None = None,
        maxsize: int = 0,
    ) -> None:
        self._bus = bus
        self._handler = handler
        self.job_id = job_id
        self._queue: queue.Queue = queue.Queue(maxsize=maxsize)
        self._closed = False
        self._thread: threading.Thread | None = None
        if handler is not None:
            self._thread = threading.Thread(
                target=self._run, name="event-subscriber", daemon=True,
            )
            self._thread.start()

    def offer(self, event: JobEvent) -> bool:
        """Enqueue without blocking; False if dropped."""
        if self._closed or (self.job_id is not None and event.job_id != self.job_id):
            return False
        try:
            self._queue.put_nowait(event)
        except queue.Full:
            logger.warning(
                "Subscriber queue full; dropped %s event for job %s",
                event.status.value, event.job_id,
            )
            return False
        return True

    def get(self, timeout: float | None = None) -> JobEvent:
        """Next event (pull-style only).

        Raises
        ------
        queue.Empty
            If nothing arrives within *timeout*.
        """
        if self._handler is not None:
            raise RuntimeError("Subscription delivers to a handler; get() is unavailable")
        item = self._queue.get(timeout=timeout)
        self._queue.task_done()
        return item

    def drain(self) -> list[JobEvent]:
        """All events queued right now (pull-style only)."""
        events = []
        while True:
            try:
                events.append(self.get(timeout=0))
            except queue.Empty:
                return events

    def iter_until(
        self,
        predicate: Callable[[JobEvent], bool],
        timeout: float = 10.0,
    ) -> Iterator[JobEvent]:
        """Yield events until one satisfies *predicate* (inclusive)."""
        while True:
            event = self.get(timeout=timeout)
            yield event
            if predicate(event):
                return

    def join(self) -> None:
        """Block until the handler has processed everything queued so far."""
        self._queue.join()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._bus._detach(self)
        if self._thread is not None:
            self._queue.put(_STOP)
            self._thread.join(timeout=5.0)

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                try:
                    self._handler(item)
                except Exception as exc:  # noqa: BLE001
                    logger.error("Event handler error: %s", exc)
            finally:
                self._queue.task_done()


class EventBus:
    """Transport-agnostic fan-out of ``JobEvent`` objects."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscriptions: list[Subscription] = []

    def subscribe(
        self,
        handler: EventHandler | None = None,
        *,
        job_id: str | None = None,
        maxsize: int = 0,
    ) -> Subscription:
        sub = Subscription(self, handler=handler, job_id=job_id, maxsize=maxsize)
        with self._lock:
            self._subscriptions.append(sub)
        return sub

    def publish(self, event: JobEvent) -> int:
        """Offer *event* to every subscriber; returns how many accepted it."""
        with self._lock:
            # Holding the lock keeps enqueue order equal to publish order
            return sum(1 for sub in self._subscriptions if sub.offer(event))

    def close(self) -> None:
        with self._lock:
            subs = list(self._subscriptions)
        for sub in subs:
            sub.close()

    def _detach(self, sub: Subscription) -> None:
        with self._lock:
            if sub in self._subscriptions:
                self._subscriptions.remove(sub)
