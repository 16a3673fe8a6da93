"""Typed lifecycle events published by the scheduler."""
from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import structlog

from placeflow.orchestrator.jobs import Job

LOGGER = structlog.get_logger(__name__)


class EventKind(str, Enum):
    JOB_ADDED = "job:added"
    JOB_STARTED = "job:started"
    JOB_COMPLETED = "job:completed"
    JOB_FAILED = "job:failed"
    JOB_RETRY = "job:retry"
    QUEUE_PAUSED = "queue:paused"
    QUEUE_RESUMED = "queue:resumed"
    QUEUE_IDLE = "queue:idle"
    QUEUE_ERROR = "queue:error"
    QUEUE_CLEARED = "queue:cleared"


@dataclass(frozen=True)
class JobEvent:
    kind: EventKind
    job: Optional[Job] = None
    result: Any = None
    error: Optional[str] = None
    delay: Optional[float] = None


Listener = Callable[[JobEvent], None]


class Subscription:
    """Handle returned by ``EventBus.subscribe``."""

    def __init__(self, bus: "EventBus", kind: EventKind, listener: Listener) -> None:
        self._bus = bus
        self._kind = kind
        self._listener = listener
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self._bus._remove(self._kind, self._listener)
            self.active = False


class EventBus:
    """Synchronous fan-out of scheduler events to listeners.

    Listener failures are logged and swallowed so that a broken subscriber
    cannot stall dispatch.
    """

    def __init__(self) -> None:
        self._listeners: Dict[EventKind, List[Listener]] = defaultdict(list)

    def subscribe(self, kind: EventKind, listener: Listener) -> Subscription:
        self._listeners[kind].append(listener)
        return Subscription(self, kind, listener)

    def _remove(self, kind: EventKind, listener: Listener) -> None:
        listeners = self._listeners.get(kind, [])
        if listener in listeners:
            listeners.remove(listener)

    def publish(self, event: JobEvent) -> None:
        for listener in list(self._listeners.get(event.kind, [])):
            try:
                listener(event)
            except Exception:
                LOGGER.exception("events.listener_failed", event_kind=event.kind.value)
