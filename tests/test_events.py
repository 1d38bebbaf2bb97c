from __future__ import annotations

from uuid import uuid4

from org_structure.adapters.event_bus_adapter import (
    EventBusEmployeeDirectory,
    EventBusNotificationSink,
    default_collaborators,
)
from org_structure.domain.models import EventEnvelope
from org_structure.infra.best_effort import best_effort
from org_structure.infra.events import (
    EVENT_CHANGE_REQUEST_SUBMITTED,
    EVENT_PRIMARY_POSITION_CLEARED,
    EVENT_PRIMARY_POSITION_UPDATED,
    EVENT_STRUCTURE_CHANGED,
    EventBus,
)
from org_structure.infra.request_context import clear_request_context, set_request_context


def test_subscribers_receive_matching_and_wildcard_events() -> None:
    bus = EventBus()
    typed: list[EventEnvelope] = []
    everything: list[EventEnvelope] = []
    bus.subscribe(EVENT_STRUCTURE_CHANGED, typed.append)
    bus.subscribe("*", everything.append)

    bus.publish_dict(EVENT_STRUCTURE_CHANGED, {"change_type": "Position Updated"})
    bus.publish_dict(EVENT_PRIMARY_POSITION_CLEARED, {"employee_id": "e-1"})

    assert [item.event_type for item in typed] == [EVENT_STRUCTURE_CHANGED]
    assert [item.event_type for item in everything] == [EVENT_STRUCTURE_CHANGED, EVENT_PRIMARY_POSITION_CLEARED]

    bus.unsubscribe(EVENT_STRUCTURE_CHANGED, typed.append)
    bus.unsubscribe(EVENT_STRUCTURE_CHANGED, typed.append)
    bus.publish_dict(EVENT_STRUCTURE_CHANGED, {})
    assert len(typed) == 1


def test_envelope_carries_actor_from_request_context() -> None:
    bus = EventBus()
    actor_id = str(uuid4())
    set_request_context(actor_id)
    try:
        envelope = bus.publish_dict(EVENT_STRUCTURE_CHANGED, {})
    finally:
        clear_request_context()
    assert envelope.actor_id == actor_id
    assert envelope.event_id
    assert bus.publish_dict(EVENT_STRUCTURE_CHANGED, {}).actor_id is None


def test_adapters_publish_payloads() -> None:
    bus = EventBus()
    seen: list[EventEnvelope] = []
    bus.subscribe("*", seen.append)
    notifications = EventBusNotificationSink(bus)
    employees = EventBusEmployeeDirectory(bus)

    notifications.notify_structure_changed("Position Deactivated", "Developer", ("e-1", "e-2"))
    notifications.notify_change_request_submitted("REQ-1-ABCDE", "r-1", "NEW_POSITION", "N/A")
    employees.update_primary_position("e-1", "p-1", "d-1")
    employees.clear_primary_position("e-1")

    assert [item.event_type for item in seen] == [
        EVENT_STRUCTURE_CHANGED,
        EVENT_CHANGE_REQUEST_SUBMITTED,
        EVENT_PRIMARY_POSITION_UPDATED,
        EVENT_PRIMARY_POSITION_CLEARED,
    ]
    assert seen[0].payload["affected_employee_ids"] == ["e-1", "e-2"]
    assert seen[2].payload == {"employee_id": "e-1", "position_id": "p-1", "department_id": "d-1"}


def test_default_collaborators_are_event_bus_backed() -> None:
    collaborators = default_collaborators()
    assert isinstance(collaborators.notifications, EventBusNotificationSink)
    assert isinstance(collaborators.employees, EventBusEmployeeDirectory)


def test_best_effort_swallows_failures() -> None:
    calls: list[str] = []

    def _ok(value: str) -> None:
        calls.append(value)

    def _broken() -> None:
        raise ConnectionError("directory offline")

    assert best_effort("ok", _ok, "done") is True
    assert calls == ["done"]
    assert best_effort("broken", _broken) is False
