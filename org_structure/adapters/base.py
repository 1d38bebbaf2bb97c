from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol


class NotificationSink(Protocol):
    def notify_structure_changed(
        self,
        change_type: str,
        target_name: str,
        affected_employee_ids: Sequence[str] | None = None,
    ) -> None: ...

    def notify_change_request_submitted(
        self,
        request_number: str,
        requester_id: str,
        request_type: str,
        target_name: str,
    ) -> None: ...

    def notify_change_request_processed(
        self,
        requester_id: str,
        request_number: str,
        decision: str,
        comments: str | None,
    ) -> None: ...


class EmployeeDirectory(Protocol):
    def update_primary_position(self, employee_id: str, position_id: str, department_id: str) -> None: ...

    def clear_primary_position(self, employee_id: str) -> None: ...


@dataclass(frozen=True)
class StructureCollaborators:
    notifications: NotificationSink
    employees: EmployeeDirectory
