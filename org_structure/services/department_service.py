from __future__ import annotations

import sqlalchemy as sa
import structlog
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from org_structure.domain.models import (
    ChangeLogAction,
    Department,
    DepartmentCreate,
    DepartmentStatsRead,
    DepartmentUpdate,
    PaginationRead,
    Position,
    PositionAssignment,
    now_utc,
)
from org_structure.infra.audit import ENTITY_DEPARTMENT, record_change, snapshot
from org_structure.infra.db import get_engine
from org_structure.services.common import (
    active_assignment_clause,
    build_pagination,
    count_rows,
    like_pattern,
    normalize_paging,
    require_uuid,
)
from org_structure.services.errors import (
    ConflictError,
    InvalidArgumentError,
    NotFoundError,
    PreconditionFailedError,
)

LOGGER = structlog.get_logger(__name__)


class DepartmentService:
    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _get_department(self, session: Session, department_id: str) -> Department:
        require_uuid(department_id, "department ID")
        department = session.get(Department, department_id)
        if department is None:
            raise NotFoundError("Department not found")
        return department

    def _ensure_unique(
        self,
        session: Session,
        *,
        code: str | None,
        name: str | None,
        exclude_id: str | None = None,
    ) -> None:
        if code is not None:
            statement = select(Department).where(Department.code == code)
            if exclude_id is not None:
                statement = statement.where(Department.id != exclude_id)
            if session.exec(statement).first() is not None:
                raise ConflictError(f"Department with code '{code}' already exists")
        if name is not None:
            statement = select(Department).where(Department.name == name)
            if exclude_id is not None:
                statement = statement.where(Department.id != exclude_id)
            if session.exec(statement).first() is not None:
                raise ConflictError(f"Department with name '{name}' already exists")

    def _commit(self, session: Session, department: Department) -> None:
        session.add(department)
        try:
            session.commit()
        except IntegrityError as exc:
            session.rollback()
            raise ConflictError("Department code or name already exists") from exc
        session.refresh(department)

    def create_department(self, payload: DepartmentCreate, performed_by: str | None) -> Department:
        if payload.head_position_id is not None:
            raise InvalidArgumentError(
                "Head position cannot be set when creating a department. "
                "Create the department first, then assign a head position."
            )
        with self._session() as session:
            self._ensure_unique(session, code=payload.code, name=payload.name)
            department = Department(
                code=payload.code,
                name=payload.name,
                description=payload.description,
                budget=payload.budget,
                is_active=payload.is_active,
            )
            self._commit(session, department)

        record_change(
            action=ChangeLogAction.CREATED,
            entity_type=ENTITY_DEPARTMENT,
            entity_id=department.id,
            performed_by=performed_by,
            summary=f"Department '{department.name}' created",
            after=department,
        )
        LOGGER.info("org.department.created", department_id=department.id, code=department.code)
        return department

    def update_department(
        self,
        department_id: str,
        payload: DepartmentUpdate,
        performed_by: str | None,
    ) -> Department:
        fields_set = payload.model_fields_set
        with self._session() as session:
            department = self._get_department(session, department_id)
            before = snapshot(department)
            self._ensure_unique(
                session,
                code=payload.code if "code" in fields_set and payload.code != department.code else None,
                name=payload.name if "name" in fields_set and payload.name != department.name else None,
                exclude_id=department.id,
            )
            if "head_position_id" in fields_set and payload.head_position_id is not None:
                head_id = require_uuid(payload.head_position_id, "head position ID")
                head = session.get(Position, head_id)
                if head is None:
                    raise NotFoundError("Head position not found")
                if not head.is_active:
                    raise InvalidArgumentError("Head position must be active")
                if head.department_id != department.id:
                    raise InvalidArgumentError("Head position must belong to this department")

            if "code" in fields_set and payload.code is not None:
                department.code = payload.code
            if "name" in fields_set and payload.name is not None:
                department.name = payload.name
            if "description" in fields_set:
                department.description = payload.description
            if "budget" in fields_set:
                department.budget = payload.budget
            if "head_position_id" in fields_set:
                department.head_position_id = payload.head_position_id
            department.updated_at = now_utc()
            self._commit(session, department)

        record_change(
            action=ChangeLogAction.UPDATED,
            entity_type=ENTITY_DEPARTMENT,
            entity_id=department.id,
            performed_by=performed_by,
            summary=f"Department '{department.name}' updated",
            before=before,
            after=department,
        )
        return department

    def deactivate_department(self, department_id: str, performed_by: str | None) -> Department:
        with self._session() as session:
            department = self._get_department(session, department_id)
            if not department.is_active:
                raise InvalidArgumentError("Department is already inactive")
            active_positions = count_rows(
                session,
                Position,
                col(Position.department_id) == department.id,
                col(Position.is_active).is_(True),
            )
            if active_positions > 0:
                raise PreconditionFailedError(
                    "DEPARTMENT_HAS_ACTIVE_POSITIONS",
                    f"Cannot deactivate department with {active_positions} active position(s). "
                    "Please deactivate or reassign positions first.",
                    {"active_positions": active_positions},
                )
            before = snapshot(department)
            department.is_active = False
            department.updated_at = now_utc()
            self._commit(session, department)

        record_change(
            action=ChangeLogAction.DEACTIVATED,
            entity_type=ENTITY_DEPARTMENT,
            entity_id=department.id,
            performed_by=performed_by,
            summary=f"Department '{department.name}' deactivated",
            before=before,
            after=department,
        )
        LOGGER.info("org.department.deactivated", department_id=department.id)
        return department

    def reactivate_department(self, department_id: str, performed_by: str | None) -> Department:
        with self._session() as session:
            department = self._get_department(session, department_id)
            if department.is_active:
                raise InvalidArgumentError("Department is already active")
            before = snapshot(department)
            department.is_active = True
            department.updated_at = now_utc()
            self._commit(session, department)

        record_change(
            action=ChangeLogAction.UPDATED,
            entity_type=ENTITY_DEPARTMENT,
            entity_id=department.id,
            performed_by=performed_by,
            summary=f"Department '{department.name}' reactivated",
            before=before,
            after=department,
        )
        return department

    def get_department(self, department_id: str) -> Department:
        with self._session() as session:
            return self._get_department(session, department_id)

    def list_departments(self, is_active: bool | None = None) -> list[Department]:
        with self._session() as session:
            statement = select(Department)
            if is_active is not None:
                statement = statement.where(Department.is_active == is_active)
            statement = statement.order_by(col(Department.name))
            return list(session.exec(statement).all())

    def search_departments(
        self,
        *,
        query: str | None = None,
        is_active: bool | None = None,
        page: int | None = None,
        limit: int | None = None,
    ) -> tuple[list[Department], PaginationRead]:
        page_value, limit_value = normalize_paging(page, limit)
        clauses = []
        if query and query.strip():
            pattern = like_pattern(query)
            clauses.append(
                sa.or_(
                    sa.func.lower(col(Department.code)).like(pattern),
                    sa.func.lower(col(Department.name)).like(pattern),
                    sa.func.lower(sa.func.coalesce(col(Department.description), "")).like(pattern),
                )
            )
        if is_active is not None:
            clauses.append(col(Department.is_active).is_(is_active))

        with self._session() as session:
            total = count_rows(session, Department, *clauses)
            statement = select(Department)
            for clause in clauses:
                statement = statement.where(clause)
            statement = (
                statement.order_by(col(Department.name))
                .offset((page_value - 1) * limit_value)
                .limit(limit_value)
            )
            rows = list(session.exec(statement).all())
        return rows, build_pagination(total, page_value, limit_value)

    def get_department_stats(self) -> DepartmentStatsRead:
        with self._session() as session:
            total = count_rows(session, Department)
            active = count_rows(session, Department, col(Department.is_active).is_(True))
        return DepartmentStatsRead(total=total, active=active, inactive=total - active)

    def get_department_hierarchy(
        self,
        department_id: str,
    ) -> tuple[Department, list[Position], list[PositionAssignment]]:
        with self._session() as session:
            department = self._get_department(session, department_id)
            positions = list(
                session.exec(
                    select(Position)
                    .where(Position.department_id == department.id)
                    .order_by(col(Position.title))
                ).all()
            )
            assignments = list(
                session.exec(
                    select(PositionAssignment)
                    .where(PositionAssignment.department_id == department.id)
                    .where(active_assignment_clause())
                    .order_by(col(PositionAssignment.start_date).desc())
                ).all()
            )
        return department, positions, assignments
