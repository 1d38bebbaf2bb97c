from __future__ import annotations

from collections.abc import Sequence

from org_structure.adapters.base import StructureCollaborators
from org_structure.infra.events import (
    EVENT_CHANGE_REQUEST_PROCESSED,
    EVENT_CHANGE_REQUEST_SUBMITTED,
    EVENT_PRIMARY_POSITION_CLEARED,
    EVENT_PRIMARY_POSITION_UPDATED,
    EVENT_STRUCTURE_CHANGED,
    EventBus,
    event_bus,
)


class EventBusNotificationSink:
    def __init__(self, bus: EventBus | None = None) -> None:
        self._bus = bus or event_bus

    def notify_structure_changed(
        self,
        change_type: str,
        target_name: str,
        affected_employee_ids: Sequence[str] | None = None,
    ) -> None:
        self._bus.publish_dict(
            EVENT_STRUCTURE_CHANGED,
            {
                "change_type": change_type,
                "target_name": target_name,
                "affected_employee_ids": list(affected_employee_ids or []),
            },
        )

    def notify_change_request_submitted(
        self,
        request_number: str,
        requester_id: str,
        request_type: str,
        target_name: str,
    ) -> None:
        self._bus.publish_dict(
            EVENT_CHANGE_REQUEST_SUBMITTED,
            {
                "request_number": request_number,
                "requester_id": requester_id,
                "request_type": request_type,
                "target_name": target_name,
            },
        )

    def notify_change_request_processed(
        self,
        requester_id: str,
        request_number: str,
        decision: str,
        comments: str | None,
    ) -> None:
        self._bus.publish_dict(
            EVENT_CHANGE_REQUEST_PROCESSED,
            {
                "requester_id": requester_id,
                "request_number": request_number,
                "decision": decision,
                "comments": comments,
            },
        )


class EventBusEmployeeDirectory:
    def __init__(self, bus: EventBus | None = None) -> None:
        self._bus = bus or event_bus

    def update_primary_position(self, employee_id: str, position_id: str, department_id: str) -> None:
        self._bus.publish_dict(
            EVENT_PRIMARY_POSITION_UPDATED,
            {
                "employee_id": employee_id,
                "position_id": position_id,
                "department_id": department_id,
            },
        )

    def clear_primary_position(self, employee_id: str) -> None:
        self._bus.publish_dict(EVENT_PRIMARY_POSITION_CLEARED, {"employee_id": employee_id})


def default_collaborators() -> StructureCollaborators:
    return StructureCollaborators(
        notifications=EventBusNotificationSink(),
        employees=EventBusEmployeeDirectory(),
    )
