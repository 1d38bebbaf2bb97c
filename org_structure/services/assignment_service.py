from __future__ import annotations

from typing import Any

import structlog
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from org_structure.adapters.base import StructureCollaborators
from org_structure.adapters.event_bus_adapter import default_collaborators
from org_structure.domain.models import (
    AssignmentCreate,
    AssignmentEndRequest,
    ChangeLogAction,
    PaginationRead,
    Position,
    PositionAssignment,
    StructureChangeRequest,
    now_utc,
)
from org_structure.infra.audit import ENTITY_ASSIGNMENT, record_change, snapshot
from org_structure.infra.best_effort import best_effort
from org_structure.infra.db import get_engine
from org_structure.infra.locks import LockUnavailableError, org_lock
from org_structure.services.common import (
    active_assignment_clause,
    build_pagination,
    count_rows,
    normalize_paging,
    optional_uuid,
    require_uuid,
)
from org_structure.services.errors import ConflictError, InvalidArgumentError, NotFoundError

LOGGER = structlog.get_logger(__name__)

SUPERSEDED_NOTE = "Superseded by new assignment"


def employee_lock_name(employee_id: str) -> str:
    return f"employee-assignment:{employee_id}"


class AssignmentService:
    def __init__(self, collaborators: StructureCollaborators | None = None) -> None:
        self._collaborators = collaborators or default_collaborators()

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _get_assignment(self, session: Session, assignment_id: str) -> PositionAssignment:
        require_uuid(assignment_id, "assignment ID")
        assignment = session.get(PositionAssignment, assignment_id)
        if assignment is None:
            raise NotFoundError("Assignment not found")
        return assignment

    def _ensure_change_request(self, session: Session, change_request_id: str | None) -> None:
        if change_request_id is None:
            return
        require_uuid(change_request_id, "change request ID")
        if session.get(StructureChangeRequest, change_request_id) is None:
            raise NotFoundError("Change request not found")

    def _current_assignment(self, session: Session, employee_id: str) -> PositionAssignment | None:
        statement = (
            select(PositionAssignment)
            .where(PositionAssignment.employee_id == employee_id)
            .where(active_assignment_clause())
            .order_by(col(PositionAssignment.start_date).desc(), col(PositionAssignment.created_at).desc())
        )
        return session.exec(statement).first()

    def assign_employee(self, payload: AssignmentCreate, performed_by: str | None) -> PositionAssignment:
        """Give an employee a position, closing whatever they held before."""
        employee_id = require_uuid(payload.employee_id, "employee ID")
        require_uuid(payload.position_id, "position ID")
        optional_uuid(payload.department_id, "department ID")

        try:
            with org_lock(employee_lock_name(employee_id)):
                assignment, position, superseded_id = self._assign_locked(employee_id, payload)
        except LockUnavailableError as exc:
            raise ConflictError("Another assignment change for this employee is in progress") from exc

        summary = f"Employee {employee_id} assigned to position '{position.title}'"
        if superseded_id is not None:
            summary = f"{summary}; superseded assignment {superseded_id}"
        record_change(
            action=ChangeLogAction.REASSIGNED,
            entity_type=ENTITY_ASSIGNMENT,
            entity_id=assignment.id,
            performed_by=performed_by,
            summary=summary,
            after=assignment,
        )
        best_effort(
            "update_primary_position",
            self._collaborators.employees.update_primary_position,
            employee_id,
            position.id,
            position.department_id,
        )
        best_effort(
            "notify_structure_changed",
            self._collaborators.notifications.notify_structure_changed,
            "Position Assignment",
            position.title,
            [employee_id],
        )
        LOGGER.info(
            "org.assignment.created",
            assignment_id=assignment.id,
            employee_id=employee_id,
            position_id=position.id,
            superseded_assignment_id=superseded_id,
        )
        return assignment

    def _assign_locked(
        self,
        employee_id: str,
        payload: AssignmentCreate,
    ) -> tuple[PositionAssignment, Position, str | None]:
        with self._session() as session:
            position = session.get(Position, payload.position_id)
            if position is None:
                raise NotFoundError("Position not found")
            if not position.is_active:
                raise InvalidArgumentError("Cannot assign to an inactive position")
            if payload.department_id is not None and payload.department_id != position.department_id:
                raise InvalidArgumentError("Department does not match the position's department")
            self._ensure_change_request(session, payload.change_request_id)

            superseded_id: str | None = None
            current = self._current_assignment(session, employee_id)
            if current is not None:
                if current.position_id == position.id:
                    raise ConflictError("Employee is already assigned to this position")
                if payload.start_date < current.start_date:
                    raise InvalidArgumentError("Start date cannot be before the current assignment's start date")
                current.end_date = payload.start_date
                current.notes = SUPERSEDED_NOTE
                current.updated_at = now_utc()
                session.add(current)
                # The open-assignment unique index must see the old row closed first.
                session.flush()
                superseded_id = current.id

            assignment = PositionAssignment(
                employee_id=employee_id,
                position_id=position.id,
                department_id=position.department_id,
                start_date=payload.start_date,
                change_request_id=payload.change_request_id,
                reason=payload.reason,
                notes=payload.notes,
            )
            session.add(assignment)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("Employee already has an open assignment") from exc
            session.refresh(assignment)
            return assignment, position, superseded_id

    def end_assignment(
        self,
        assignment_id: str,
        payload: AssignmentEndRequest,
        performed_by: str | None,
    ) -> PositionAssignment:
        with self._session() as session:
            employee_id = self._get_assignment(session, assignment_id).employee_id

        try:
            with org_lock(employee_lock_name(employee_id)):
                assignment, before = self._end_locked(assignment_id, payload)
        except LockUnavailableError as exc:
            raise ConflictError("Another assignment change for this employee is in progress") from exc

        record_change(
            action=ChangeLogAction.UPDATED,
            entity_type=ENTITY_ASSIGNMENT,
            entity_id=assignment.id,
            performed_by=performed_by,
            summary=f"Assignment ended on {payload.end_date.isoformat()}",
            before=before,
            after=assignment,
        )
        best_effort(
            "clear_primary_position",
            self._collaborators.employees.clear_primary_position,
            employee_id,
        )
        with self._session() as session:
            position = session.get(Position, assignment.position_id)
        best_effort(
            "notify_structure_changed",
            self._collaborators.notifications.notify_structure_changed,
            "Position Assignment Ended",
            position.title if position is not None else assignment.position_id,
            [employee_id],
        )
        return assignment

    def _end_locked(
        self,
        assignment_id: str,
        payload: AssignmentEndRequest,
    ) -> tuple[PositionAssignment, dict[str, Any] | None]:
        with self._session() as session:
            assignment = self._get_assignment(session, assignment_id)
            if assignment.end_date is not None:
                raise InvalidArgumentError("Assignment has already ended")
            if payload.end_date < assignment.start_date:
                raise InvalidArgumentError("End date cannot be before start date")
            self._ensure_change_request(session, payload.change_request_id)

            before = snapshot(assignment)
            assignment.end_date = payload.end_date
            if payload.reason is not None:
                assignment.reason = payload.reason
            if payload.notes is not None:
                assignment.notes = payload.notes
            if payload.change_request_id is not None:
                assignment.change_request_id = payload.change_request_id
            assignment.updated_at = now_utc()
            session.add(assignment)
            session.commit()
            session.refresh(assignment)
            return assignment, before

    def get_assignment(self, assignment_id: str) -> PositionAssignment:
        with self._session() as session:
            return self._get_assignment(session, assignment_id)

    def get_employee_history(self, employee_id: str) -> list[PositionAssignment]:
        require_uuid(employee_id, "employee ID")
        with self._session() as session:
            statement = (
                select(PositionAssignment)
                .where(PositionAssignment.employee_id == employee_id)
                .order_by(
                    col(PositionAssignment.start_date).desc(),
                    col(PositionAssignment.created_at).desc(),
                )
            )
            return list(session.exec(statement).all())

    def get_current_assignment(self, employee_id: str) -> PositionAssignment | None:
        require_uuid(employee_id, "employee ID")
        with self._session() as session:
            return self._current_assignment(session, employee_id)

    def search_assignments(
        self,
        *,
        employee_id: str | None = None,
        position_id: str | None = None,
        department_id: str | None = None,
        active_only: bool = False,
        page: int | None = None,
        limit: int | None = None,
    ) -> tuple[list[PositionAssignment], PaginationRead]:
        optional_uuid(employee_id, "employee ID")
        optional_uuid(position_id, "position ID")
        optional_uuid(department_id, "department ID")
        page_value, limit_value = normalize_paging(page, limit)
        clauses = []
        if employee_id is not None:
            clauses.append(col(PositionAssignment.employee_id) == employee_id)
        if position_id is not None:
            clauses.append(col(PositionAssignment.position_id) == position_id)
        if department_id is not None:
            clauses.append(col(PositionAssignment.department_id) == department_id)
        if active_only:
            clauses.append(active_assignment_clause())

        with self._session() as session:
            total = count_rows(session, PositionAssignment, *clauses)
            statement = select(PositionAssignment)
            for clause in clauses:
                statement = statement.where(clause)
            statement = (
                statement.order_by(
                    col(PositionAssignment.start_date).desc(),
                    col(PositionAssignment.created_at).desc(),
                )
                .offset((page_value - 1) * limit_value)
                .limit(limit_value)
            )
            rows = list(session.exec(statement).all())
        return rows, build_pagination(total, page_value, limit_value)
