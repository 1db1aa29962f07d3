"""
Event Bus: the controller's observability surface.

Toasts, status buttons, audit logs and the API attach here as subscribers.
Events are emitted as a side effect; nothing a subscriber does feeds back
into control decisions.
"""

import uuid
from datetime import datetime
from typing import Any, Callable, Dict, List

from loguru import logger
from pydantic import BaseModel, Field

TICK_REPORT = "tick.report"
LOCK_CHANGED = "lock.changed"
SETTINGS_UPDATED = "settings.updated"
PROBE_COMPLETED = "probe.completed"


class ControllerEvent(BaseModel):
    event_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    event_type: str
    controller_id: str
    payload: Dict[str, Any]


class EventBus:
    """Synchronous fan-out to subscribers."""

    def __init__(self):
        self._subscribers: List[Callable[[ControllerEvent], None]] = []

    def subscribe(self, callback: Callable[[ControllerEvent], None]) -> None:
        """Register a callback to be executed when an event is emitted."""
        self._subscribers.append(callback)

    def emit(self, event_type: str, controller_id: str, payload: Dict[str, Any]) -> ControllerEvent:
        """Construct and broadcast an event. A failing subscriber never reaches the emitter."""
        event = ControllerEvent(
            event_type=event_type,
            controller_id=controller_id,
            payload=payload,
        )
        for subscriber in list(self._subscribers):
            try:
                subscriber(event)
            except Exception:
                logger.exception(f"[BUS] Subscriber failed on {event_type}")
        return event
