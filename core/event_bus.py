"""
Event Bus

Ordered, time-stamped, append-only feed of lifecycle and log events.

Producers (session controller, subprocess supervisor) publish; any number of
observers (service status writer, tests, UI) subscribe. Each subscriber owns a
bounded queue. A full queue drops the event for that subscriber only, so
publishing never blocks on a slow consumer.
"""

import itertools
import logging
import queue
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Deque, Dict, List, Optional

from config.settings import EVENT_HISTORY_SIZE, SUBSCRIBER_QUEUE_SIZE


class Severity(Enum):
    """Event severity, mapped onto logging levels"""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"

    @property
    def log_level(self) -> int:
        return {
            Severity.DEBUG: logging.DEBUG,
            Severity.INFO: logging.INFO,
            Severity.WARNING: logging.WARNING,
            Severity.ERROR: logging.ERROR,
        }[self]


class EventKind(Enum):
    """What an event is about"""

    INFO = "info"  # General progress message
    STATE_CHANGED = "state_changed"  # Session state transition
    REJECTED = "rejected"  # start()/stop() called in the wrong state
    ERROR = "error"  # Error that changed session state
    TRANSCODE_DEGRADED = "transcode_degraded"  # Raw file kept, conversion failed
    PROCESS_OUTPUT = "process_output"  # One line of subprocess output
    PROCESS_EXIT = "process_exit"  # Supervised process exited


@dataclass(frozen=True)
class Event:
    """
    One entry of the event feed.

    sequence is assigned by the bus and is strictly increasing.
    """

    timestamp: float
    severity: Severity
    message: str
    session_id: Optional[str] = None
    kind: EventKind = EventKind.INFO
    details: Dict[str, Any] = field(default_factory=dict)
    sequence: int = 0

    @property
    def time(self) -> datetime:
        return datetime.fromtimestamp(self.timestamp)


def format_event(event: Event) -> str:
    """
    Render an event as a log panel line.

    Example:
        format_event(event)  # "2025-01-15 14:30:22: Recording started"
    """
    return f"{event.time.strftime('%Y-%m-%d %H:%M:%S')}: {event.message}"


class EventSubscription:
    """
    A subscriber's view of the bus.

    Usage:
        sub = bus.subscribe()
        event = sub.get(timeout=1.0)
        remaining = sub.drain()
        sub.close()
    """

    def __init__(self, bus: "EventBus", maxsize: int):
        self._bus = bus
        self._queue: "queue.Queue[Event]" = queue.Queue(maxsize=maxsize)
        self.dropped = 0
        self.closed = False

    def _offer(self, event: Event) -> None:
        try:
            self._queue.put_nowait(event)
        except queue.Full:
            self.dropped += 1

    def get(self, timeout: Optional[float] = None) -> Optional[Event]:
        """Next event, or None if none arrived within timeout"""
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> List[Event]:
        """All events currently buffered, oldest first"""
        events = []
        while True:
            try:
                events.append(self._queue.get_nowait())
            except queue.Empty:
                return events

    def close(self) -> None:
        """Stop receiving events"""
        self._bus.unsubscribe(self)
        self.closed = True

    def __enter__(self) -> "EventSubscription":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class EventBus:
    """
    Broadcast event feed with bounded replay history.

    Usage:
        bus = EventBus()
        sub = bus.subscribe()
        bus.publish(Severity.INFO, "Recording started", session_id="abc")
        print(format_event(sub.get(timeout=1.0)))
    """

    def __init__(
        self,
        history_size: int = EVENT_HISTORY_SIZE,
        subscriber_queue_size: int = SUBSCRIBER_QUEUE_SIZE,
    ):
        self.logger = logging.getLogger(__name__)
        self.subscriber_queue_size = subscriber_queue_size

        self._subscribers: List[EventSubscription] = []
        self._history: Deque[Event] = deque(maxlen=history_size)
        self._sequence = itertools.count(1)

        # Held only to assign order and fan out (never across consumer code)
        self._lock = threading.Lock()

    def subscribe(self, maxsize: Optional[int] = None) -> EventSubscription:
        """Register a new subscriber; it receives events published from now on"""
        subscription = EventSubscription(
            self,
            maxsize if maxsize is not None else self.subscriber_queue_size,
        )
        with self._lock:
            self._subscribers.append(subscription)
        return subscription

    def unsubscribe(self, subscription: EventSubscription) -> None:
        with self._lock:
            if subscription in self._subscribers:
                self._subscribers.remove(subscription)

    def publish(
        self,
        severity: Severity,
        message: str,
        session_id: Optional[str] = None,
        kind: EventKind = EventKind.INFO,
        **details: Any,
    ) -> Event:
        """
        Append an event and broadcast it to every subscriber.

        Returns:
            The published event (with timestamp and sequence assigned)
        """
        with self._lock:
            event = Event(
                timestamp=time.time(),
                severity=severity,
                message=message,
                session_id=session_id,
                kind=kind,
                details=details,
                sequence=next(self._sequence),
            )
            self._history.append(event)
            for subscription in self._subscribers:
                subscription._offer(event)

        prefix = f"[{session_id[:8]}] " if session_id else ""
        self.logger.log(severity.log_level, f"{prefix}{message}")
        return event

    def history(
        self,
        session_id: Optional[str] = None,
        kind: Optional[EventKind] = None,
    ) -> List[Event]:
        """Replay of retained events, oldest first, optionally filtered"""
        with self._lock:
            events = list(self._history)
        if session_id is not None:
            events = [e for e in events if e.session_id == session_id]
        if kind is not None:
            events = [e for e in events if e.kind == kind]
        return events

    def clear_history(self) -> None:
        """Forget retained events (subscribers are not affected)"""
        with self._lock:
            self._history.clear()

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)
