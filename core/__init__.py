"""
Core utilities and modules.

Public API:
    - EventBus: Ordered broadcast feed of lifecycle and log events
    - Event, EventKind, Severity: Event data types
    - format_event: Render an event as a log line
    - StateMachine: Guarded transition-table state holder
    - ErrorKind, SessionError: Session error taxonomy

Usage:
    from core import EventBus, Severity

    bus = EventBus()
    sub = bus.subscribe()
    bus.publish(Severity.INFO, "hello")
"""

from core.event_bus import (
    Event,
    EventBus,
    EventKind,
    EventSubscription,
    Severity,
    format_event,
)
from core.errors import ErrorKind, SessionError
from core.state_machine import InvalidTransitionError, StateMachine

__all__ = [
    "ErrorKind",
    "Event",
    "EventBus",
    "EventKind",
    "EventSubscription",
    "InvalidTransitionError",
    "SessionError",
    "Severity",
    "StateMachine",
    "format_event",
]
