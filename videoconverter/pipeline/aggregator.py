"""Single-consumer accumulation of run counters.

Workers on any thread publish count events on the EventBus. The aggregator's
bus callbacks only enqueue them; one consumer thread drains the queue and is
the only code that ever writes RunCounters, so no locking of the counters is
needed and any interleaving of producers gives the same totals.
"""

import logging
import queue
import threading
from typing import Optional

from videoconverter.domain.events import (
    COUNT_EVENTS,
    DerivativeConverted,
    DerivativeConvertFailed,
    DerivativeUploaded,
    DerivativeUploadFailed,
    Event,
    RunFinished,
    VideosDiscovered,
)
from videoconverter.domain.models import RunCounters
from videoconverter.infrastructure.event_bus import EventBus

_STOP = object()


class ProgressAggregator:
    """Consumes count events and accumulates them into RunCounters.

    Args:
        event_bus: Bus the workers publish count events to.
    """

    def __init__(self, event_bus: EventBus):
        self.logger = logging.getLogger(__name__)
        self._queue: "queue.Queue" = queue.Queue()
        self._counters = RunCounters()
        self._finished = threading.Event()
        self._thread: Optional[threading.Thread] = None
        for event_type in COUNT_EVENTS:
            event_bus.subscribe(event_type, self._enqueue)

    def _enqueue(self, event: Event):
        self._queue.put(event)

    def start(self):
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._consume, name="progress-aggregator", daemon=True)
        self._thread.start()

    def _consume(self):
        while True:
            item = self._queue.get()
            if item is _STOP:
                break
            self._apply(item)
            if isinstance(item, RunFinished):
                break
        self._finished.set()

    def _apply(self, event: Event):
        counters = self._counters
        if isinstance(event, VideosDiscovered):
            counters.discovered += event.count
        elif isinstance(event, DerivativeConverted):
            counters.converted += 1
        elif isinstance(event, DerivativeConvertFailed):
            counters.convert_failed += 1
        elif isinstance(event, DerivativeUploaded):
            counters.uploaded += 1
        elif isinstance(event, DerivativeUploadFailed):
            counters.upload_failed += 1
        elif isinstance(event, RunFinished):
            counters.completed = True
            self.logger.info("Run finished signal received")

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Blocks until the consumer stopped; returns False on timeout."""
        return self._finished.wait(timeout)

    def stop(self, timeout: float = 5.0):
        """Stops the consumer after the events queued so far are applied."""
        if self._thread is None or self._finished.is_set():
            return
        self._queue.put(_STOP)
        self._thread.join(timeout)

    def snapshot(self) -> RunCounters:
        return self._counters.model_copy()
