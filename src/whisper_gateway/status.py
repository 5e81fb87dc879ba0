"""Status events for observers such as a menu-bar UI or a log tail.

Sinks are plain callables. They run on the emitting thread, so a sink
that needs to do slow work should hand the event off to its own queue.
"""

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import Union

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EngineActivated:
    provider: str
    model_name: str


@dataclass(frozen=True)
class EngineReleased:
    provider: str
    reason: str


@dataclass(frozen=True)
class DownloadProgress:
    model_name: str
    fraction: float


@dataclass(frozen=True)
class RequestLog:
    message: str


StatusEvent = Union[EngineActivated, EngineReleased, DownloadProgress, RequestLog]
StatusSink = Callable[[StatusEvent], None]


class StatusBus:
    """Fan-out of status events to subscribed sinks."""

    def __init__(self) -> None:
        self._sinks: list[StatusSink] = []
        self._lock = threading.Lock()

    def subscribe(self, sink: StatusSink) -> Callable[[], None]:
        """Register a sink and return a function that unregisters it."""
        with self._lock:
            self._sinks.append(sink)

        def unsubscribe() -> None:
            with self._lock:
                if sink in self._sinks:
                    self._sinks.remove(sink)

        return unsubscribe

    def emit(self, event: StatusEvent) -> None:
        with self._lock:
            sinks = list(self._sinks)
        for sink in sinks:
            try:
                sink(event)
            except Exception:
                logger.exception("Status sink %r failed on %s", sink, type(event).__name__)
