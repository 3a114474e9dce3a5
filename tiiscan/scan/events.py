"""Scan progress events and the channel that carries them to consumers."""

from __future__ import annotations

import queue
import threading
from dataclasses import dataclass
from typing import Callable, List, Optional, Union

from tiiscan.detection.types import ChannelOutcome, DetectedTransmitter
from tiiscan.io.channels import ChannelId
from tiiscan.util.logging import get_logger, log_exception

log = get_logger(__name__)


@dataclass(frozen=True)
class ChannelStarted:
    channel: ChannelId
    cycle: int
    index: int


@dataclass(frozen=True)
class ChannelFinished:
    channel: ChannelId
    cycle: int
    outcome: ChannelOutcome


@dataclass(frozen=True)
class TransmitterDetected:
    detection: DetectedTransmitter


@dataclass(frozen=True)
class CycleCompleted:
    cycle: int


@dataclass(frozen=True)
class SessionCompleted:
    cycles: int
    reason: str = "completed"


@dataclass(frozen=True)
class SessionCancelled:
    reason: str = "cancelled"


@dataclass(frozen=True)
class SessionFailed:
    reason: str
    error: Optional[BaseException] = None


ScanEvent = Union[
    ChannelStarted,
    ChannelFinished,
    TransmitterDetected,
    CycleCompleted,
    SessionCompleted,
    SessionCancelled,
    SessionFailed,
]

TERMINAL_EVENTS = (SessionCompleted, SessionCancelled, SessionFailed)


def is_terminal(event: ScanEvent) -> bool:
    return isinstance(event, TERMINAL_EVENTS)


class EventChannel:
    """Fan-out of scan events in emission order.

    Queue subscribers receive every event published after they subscribed;
    listeners are called synchronously on the publishing thread. Deliveries
    are serialized so all consumers observe the same order. A listener may
    subscribe, add or remove listeners, or publish; changes to the consumer
    lists apply from the next event on.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._delivery = threading.RLock()
        self._queues: List["queue.Queue[ScanEvent]"] = []
        self._listeners: List[Callable[[ScanEvent], None]] = []

    def subscribe(self) -> "queue.Queue[ScanEvent]":
        q: "queue.Queue[ScanEvent]" = queue.Queue()
        with self._lock:
            self._queues.append(q)
        return q

    def unsubscribe(self, q: "queue.Queue[ScanEvent]") -> None:
        with self._lock:
            if q in self._queues:
                self._queues.remove(q)

    def add_listener(self, listener: Callable[[ScanEvent], None]) -> None:
        with self._lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: Callable[[ScanEvent], None]) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def publish(self, event: ScanEvent) -> None:
        with self._delivery:
            with self._lock:
                queues = list(self._queues)
                listeners = list(self._listeners)
            for q in queues:
                q.put(event)
            for listener in listeners:
                try:
                    listener(event)
                except Exception:
                    # a broken consumer must not stop the scan worker
                    log_exception(log, f"event listener failed on {type(event).__name__}", error_type="listener")


def drain(q: "queue.Queue[ScanEvent]") -> List[ScanEvent]:
    """Pop every event currently queued without blocking."""
    events: List[ScanEvent] = []
    while True:
        try:
            events.append(q.get_nowait())
        except queue.Empty:
            return events
