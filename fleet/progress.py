"""
Progress reporting - background tasks talk to a single consumer via a queue.

Provisioning, linking and bulk lifecycle operations run on a background
thread. They never touch consumer state directly; every update is a
ProgressEvent put on a bounded queue that the consumer (a UI loop or the
CLI) drains.

Usage:
    events = ProgressQueue()
    task = BackgroundTask(lambda report: create_fleet(3, report=report), events)
    task.start()
    for event in events.iter_events():
        print(event.message)
    result = task.result

Cancelling only detaches the consumer: external commands already running
keep running.
"""

import logging
import queue
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Iterator, List, Optional

logger = logging.getLogger("fleet.progress")

DEFAULT_QUEUE_SIZE = 1000


class EventKind(str, Enum):
    INFO = "info"       # Step announcements
    OUTPUT = "output"   # Verbatim external command output
    ERROR = "error"     # Terminal: task failed
    DONE = "done"       # Terminal: task finished


@dataclass
class ProgressEvent:
    kind: EventKind
    message: str
    index: Optional[int] = None
    payload: Any = None

    @property
    def terminal(self) -> bool:
        return self.kind in (EventKind.DONE, EventKind.ERROR)


# report(message, kind=EventKind.INFO, index=None)
Reporter = Callable[..., None]


def null_reporter(message: str, kind: EventKind = EventKind.INFO, index: Optional[int] = None) -> None:
    """Reporter that discards everything."""
    return None


def logging_reporter(message: str, kind: EventKind = EventKind.INFO, index: Optional[int] = None) -> None:
    """Reporter that forwards to the progress logger."""
    if kind == EventKind.ERROR:
        logger.error(message)
    elif kind == EventKind.OUTPUT:
        logger.debug(message)
    else:
        logger.info(message)


class ProgressQueue:
    """Bounded queue of ProgressEvents with a single consumer."""

    def __init__(self, maxsize: int = DEFAULT_QUEUE_SIZE):
        self._queue: "queue.Queue[ProgressEvent]" = queue.Queue(maxsize=maxsize)
        self._cancelled = threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self):
        """Stop listening. Producers drop further events instead of blocking."""
        self._cancelled.set()

    def put(self, event: ProgressEvent):
        # Block while the consumer catches up, but never after cancel
        while not self._cancelled.is_set():
            try:
                self._queue.put(event, timeout=0.1)
                return
            except queue.Full:
                continue

    def reporter(self) -> Reporter:
        """A report() callable bound to this queue."""
        def report(message: str, kind: EventKind = EventKind.INFO, index: Optional[int] = None):
            self.put(ProgressEvent(kind=EventKind(kind), message=message, index=index))
        return report

    def drain(self) -> List[ProgressEvent]:
        """Return every queued event without blocking."""
        events = []
        while True:
            try:
                events.append(self._queue.get_nowait())
            except queue.Empty:
                return events

    def iter_events(self, timeout: Optional[float] = None) -> Iterator[ProgressEvent]:
        """
        Yield events until a terminal one (inclusive), cancel, or `timeout`
        seconds without any event.
        """
        while not self._cancelled.is_set():
            try:
                event = self._queue.get(timeout=0.1 if timeout is None else timeout)
            except queue.Empty:
                if timeout is None:
                    continue
                return
            yield event
            if event.terminal:
                return


class BackgroundTask:
    """Run `target(report)` on a daemon thread, posting one terminal event."""

    def __init__(self, target: Callable[[Reporter], Any], events: ProgressQueue, name: str = "fleet-task"):
        self._target = target
        self._events = events
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)
        self.result: Any = None
        self.error: Optional[BaseException] = None
        self.started_at: Optional[float] = None
        self.finished_at: Optional[float] = None

    def start(self) -> "BackgroundTask":
        self.started_at = time.time()
        self._thread.start()
        return self

    def join(self, timeout: Optional[float] = None) -> bool:
        self._thread.join(timeout)
        return not self._thread.is_alive()

    @property
    def running(self) -> bool:
        return self._thread.is_alive()

    def cancel(self):
        """Detach the consumer. The task itself keeps running to completion."""
        logger.info(f"Consumer detached from {self._thread.name}; work continues in background")
        self._events.cancel()

    def _run(self):
        report = self._events.reporter()
        try:
            self.result = self._target(report)
        except Exception as e:
            self.error = e
            details = e.details() if hasattr(e, "details") else str(e)
            logger.debug(f"{self._thread.name} failed: {e}")
            self._events.put(ProgressEvent(kind=EventKind.ERROR, message=details, payload=e))
        else:
            self._events.put(ProgressEvent(kind=EventKind.DONE, message="done", payload=self.result))
        finally:
            self.finished_at = time.time()
