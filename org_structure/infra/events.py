from __future__ import annotations

from collections import defaultdict
from collections.abc import Callable
from typing import Any

from org_structure.domain.models import EventEnvelope
from org_structure.infra.request_context import get_employee_id

EventHandler = Callable[[EventEnvelope], None]

EVENT_STRUCTURE_CHANGED = "org.structure_changed"
EVENT_CHANGE_REQUEST_SUBMITTED = "org.change_request_submitted"
EVENT_CHANGE_REQUEST_PROCESSED = "org.change_request_processed"
EVENT_PRIMARY_POSITION_UPDATED = "employee.primary_position_updated"
EVENT_PRIMARY_POSITION_CLEARED = "employee.primary_position_cleared"


class EventBus:
    """In-process fan-out; envelopes are handed to subscribers and never stored."""

    def __init__(self) -> None:
        self._subscribers: dict[str, list[EventHandler]] = defaultdict(list)

    def subscribe(self, event_type: str, handler: EventHandler) -> None:
        self._subscribers[event_type].append(handler)

    def unsubscribe(self, event_type: str, handler: EventHandler) -> None:
        if event_type in self._subscribers and handler in self._subscribers[event_type]:
            self._subscribers[event_type].remove(handler)

    def publish(self, event: EventEnvelope) -> None:
        handlers = [*self._subscribers.get(event.event_type, []), *self._subscribers.get("*", [])]
        for handler in handlers:
            handler(event)

    def publish_dict(self, event_type: str, payload: dict[str, Any]) -> EventEnvelope:
        event = EventEnvelope(
            event_type=event_type,
            actor_id=get_employee_id(),
            payload=payload,
        )
        self.publish(event)
        return event


event_bus = EventBus()
