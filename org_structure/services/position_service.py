from __future__ import annotations

import sqlalchemy as sa
import structlog
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from org_structure.adapters.base import StructureCollaborators
from org_structure.adapters.event_bus_adapter import default_collaborators
from org_structure.domain.models import (
    ChangeLogAction,
    Department,
    PaginationRead,
    Position,
    PositionAssignment,
    PositionCreate,
    PositionStatsRead,
    PositionUpdate,
    now_utc,
)
from org_structure.infra.audit import ENTITY_POSITION, record_change, snapshot
from org_structure.infra.best_effort import best_effort
from org_structure.infra.db import get_engine
from org_structure.services import hierarchy_service
from org_structure.services.common import (
    active_assignment_clause,
    build_pagination,
    count_rows,
    like_pattern,
    normalize_paging,
    optional_uuid,
    require_uuid,
)
from org_structure.services.errors import (
    ConflictError,
    InvalidArgumentError,
    NotFoundError,
    PreconditionFailedError,
)

LOGGER = structlog.get_logger(__name__)


class PositionService:
    def __init__(self, collaborators: StructureCollaborators | None = None) -> None:
        self._collaborators = collaborators or default_collaborators()

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _get_position(self, session: Session, position_id: str) -> Position:
        require_uuid(position_id, "position ID")
        position = session.get(Position, position_id)
        if position is None:
            raise NotFoundError("Position not found")
        return position

    def _get_active_department(self, session: Session, department_id: str) -> Department:
        require_uuid(department_id, "department ID")
        department = session.get(Department, department_id)
        if department is None:
            raise NotFoundError("Department not found")
        if not department.is_active:
            raise InvalidArgumentError("Cannot use an inactive department")
        return department

    def _get_active_parent(self, session: Session, reports_to_position_id: str) -> Position:
        require_uuid(reports_to_position_id, "reports-to position ID")
        parent = session.get(Position, reports_to_position_id)
        if parent is None:
            raise NotFoundError("Reports-to position not found")
        if not parent.is_active:
            raise InvalidArgumentError("Cannot report to an inactive position")
        return parent

    def _ensure_code_unique(self, session: Session, code: str, exclude_id: str | None = None) -> None:
        statement = select(Position).where(Position.code == code)
        if exclude_id is not None:
            statement = statement.where(Position.id != exclude_id)
        if session.exec(statement).first() is not None:
            raise ConflictError(f"Position with code '{code}' already exists")

    def _commit(self, session: Session, position: Position) -> None:
        session.add(position)
        try:
            session.commit()
        except IntegrityError as exc:
            session.rollback()
            raise ConflictError("Position code already exists") from exc
        session.refresh(position)

    def _assigned_employee_ids(self, session: Session, position_id: str) -> list[str]:
        statement = (
            select(PositionAssignment.employee_id)
            .where(PositionAssignment.position_id == position_id)
            .where(active_assignment_clause())
        )
        return sorted(set(session.exec(statement).all()))

    def _headed_department(self, session: Session, position_id: str) -> Department | None:
        return session.exec(select(Department).where(Department.head_position_id == position_id)).first()

    def create_position(self, payload: PositionCreate, performed_by: str | None) -> Position:
        with self._session() as session:
            self._ensure_code_unique(session, payload.code)
            self._get_active_department(session, payload.department_id)
            if payload.reports_to_position_id is not None:
                self._get_active_parent(session, payload.reports_to_position_id)
            position = Position(
                code=payload.code,
                title=payload.title,
                description=payload.description,
                department_id=payload.department_id,
                reports_to_position_id=payload.reports_to_position_id,
            )
            self._commit(session, position)

        record_change(
            action=ChangeLogAction.CREATED,
            entity_type=ENTITY_POSITION,
            entity_id=position.id,
            performed_by=performed_by,
            summary=f"Position '{position.title}' created",
            after=position,
        )
        LOGGER.info("org.position.created", position_id=position.id, code=position.code)
        return position

    def update_position(
        self,
        position_id: str,
        payload: PositionUpdate,
        performed_by: str | None,
    ) -> Position:
        fields_set = payload.model_fields_set
        with self._session() as session:
            position = self._get_position(session, position_id)
            before = snapshot(position)

            if "code" in fields_set and payload.code is not None and payload.code != position.code:
                self._ensure_code_unique(session, payload.code, exclude_id=position.id)

            new_parent_id = payload.reports_to_position_id
            if "reports_to_position_id" in fields_set and new_parent_id is not None:
                if new_parent_id == position.id:
                    raise InvalidArgumentError("Position cannot report to itself")
                self._get_active_parent(session, new_parent_id)
                if hierarchy_service.would_create_cycle(session, position.id, new_parent_id):
                    raise PreconditionFailedError(
                        "REPORTING_CYCLE",
                        "This change would create a circular reporting structure",
                        {"position_id": position.id, "reports_to_position_id": new_parent_id},
                    )

            new_department_id = payload.department_id
            if (
                "department_id" in fields_set
                and new_department_id is not None
                and new_department_id != position.department_id
            ):
                self._get_active_department(session, new_department_id)
                headed = self._headed_department(session, position.id)
                if headed is not None:
                    raise PreconditionFailedError(
                        "POSITION_HEADS_DEPARTMENT",
                        f"Position is the head of department '{headed.name}' and cannot move "
                        "to another department. Assign a new head first.",
                        {"department_id": headed.id, "department_name": headed.name},
                    )

            if "code" in fields_set and payload.code is not None:
                position.code = payload.code
            if "title" in fields_set and payload.title is not None:
                position.title = payload.title
            if "description" in fields_set:
                position.description = payload.description
            if "department_id" in fields_set and new_department_id is not None:
                position.department_id = new_department_id
            if "reports_to_position_id" in fields_set:
                position.reports_to_position_id = new_parent_id
            position.updated_at = now_utc()
            self._commit(session, position)
            affected = self._assigned_employee_ids(session, position.id)

        record_change(
            action=ChangeLogAction.UPDATED,
            entity_type=ENTITY_POSITION,
            entity_id=position.id,
            performed_by=performed_by,
            summary=f"Position '{position.title}' updated",
            before=before,
            after=position,
        )
        if affected:
            best_effort(
                "notify_structure_changed",
                self._collaborators.notifications.notify_structure_changed,
                "Position Updated",
                position.title,
                affected,
            )
        return position

    def deactivate_position(
        self,
        position_id: str,
        performed_by: str | None,
        reason: str | None = None,
    ) -> Position:
        with self._session() as session:
            position = self._get_position(session, position_id)
            if not position.is_active:
                raise InvalidArgumentError("Position is already inactive")

            active_assignments = count_rows(
                session,
                PositionAssignment,
                col(PositionAssignment.position_id) == position.id,
                active_assignment_clause(),
            )
            if active_assignments > 0:
                raise PreconditionFailedError(
                    "POSITION_HAS_ACTIVE_ASSIGNMENTS",
                    f"Cannot deactivate position with {active_assignments} active assignment(s). "
                    "Please end or reassign them first.",
                    {"active_assignments": active_assignments},
                )
            subordinates = hierarchy_service.count_active_subordinates(session, position.id)
            if subordinates > 0:
                raise PreconditionFailedError(
                    "POSITION_HAS_ACTIVE_SUBORDINATES",
                    f"Cannot deactivate position with {subordinates} subordinate position(s). "
                    "Please reassign subordinates first.",
                    {"active_subordinates": subordinates},
                )
            headed = self._headed_department(session, position.id)
            if headed is not None:
                raise PreconditionFailedError(
                    "POSITION_HEADS_DEPARTMENT",
                    f"Cannot deactivate position that is the head of department '{headed.name}'. "
                    "Please assign a new head first.",
                    {"department_id": headed.id, "department_name": headed.name},
                )

            before = snapshot(position)
            position.is_active = False
            position.updated_at = now_utc()
            self._commit(session, position)

        summary = f"Position '{position.title}' deactivated"
        if reason:
            summary = f"{summary}: {reason}"
        record_change(
            action=ChangeLogAction.DEACTIVATED,
            entity_type=ENTITY_POSITION,
            entity_id=position.id,
            performed_by=performed_by,
            summary=summary,
            before=before,
            after=position,
        )
        best_effort(
            "notify_structure_changed",
            self._collaborators.notifications.notify_structure_changed,
            "Position Deactivated",
            position.title,
        )
        LOGGER.info("org.position.deactivated", position_id=position.id)
        return position

    def reactivate_position(self, position_id: str, performed_by: str | None) -> Position:
        with self._session() as session:
            position = self._get_position(session, position_id)
            if position.is_active:
                raise InvalidArgumentError("Position is already active")
            department = session.get(Department, position.department_id)
            if department is None or not department.is_active:
                raise PreconditionFailedError(
                    "DEPARTMENT_INACTIVE",
                    "Cannot reactivate position in an inactive department",
                    {"department_id": position.department_id},
                )
            if position.reports_to_position_id is not None:
                parent = session.get(Position, position.reports_to_position_id)
                if parent is None or not parent.is_active:
                    raise PreconditionFailedError(
                        "REPORTS_TO_INACTIVE",
                        "Cannot reactivate position that reports to an inactive position",
                        {"reports_to_position_id": position.reports_to_position_id},
                    )
            before = snapshot(position)
            position.is_active = True
            position.updated_at = now_utc()
            self._commit(session, position)

        record_change(
            action=ChangeLogAction.UPDATED,
            entity_type=ENTITY_POSITION,
            entity_id=position.id,
            performed_by=performed_by,
            summary=f"Position '{position.title}' reactivated",
            before=before,
            after=position,
        )
        return position

    def get_position(self, position_id: str) -> Position:
        with self._session() as session:
            return self._get_position(session, position_id)

    def list_positions(
        self,
        department_id: str | None = None,
        is_active: bool | None = None,
    ) -> list[Position]:
        optional_uuid(department_id, "department ID")
        with self._session() as session:
            statement = select(Position)
            if department_id is not None:
                statement = statement.where(Position.department_id == department_id)
            if is_active is not None:
                statement = statement.where(Position.is_active == is_active)
            statement = statement.order_by(col(Position.title))
            return list(session.exec(statement).all())

    def search_positions(
        self,
        *,
        query: str | None = None,
        department_id: str | None = None,
        is_active: bool | None = None,
        page: int | None = None,
        limit: int | None = None,
    ) -> tuple[list[Position], PaginationRead]:
        optional_uuid(department_id, "department ID")
        page_value, limit_value = normalize_paging(page, limit)
        clauses = []
        if query and query.strip():
            pattern = like_pattern(query)
            clauses.append(
                sa.or_(
                    sa.func.lower(col(Position.code)).like(pattern),
                    sa.func.lower(col(Position.title)).like(pattern),
                    sa.func.lower(sa.func.coalesce(col(Position.description), "")).like(pattern),
                )
            )
        if department_id is not None:
            clauses.append(col(Position.department_id) == department_id)
        if is_active is not None:
            clauses.append(col(Position.is_active).is_(is_active))

        with self._session() as session:
            total = count_rows(session, Position, *clauses)
            statement = select(Position)
            for clause in clauses:
                statement = statement.where(clause)
            statement = (
                statement.order_by(col(Position.title))
                .offset((page_value - 1) * limit_value)
                .limit(limit_value)
            )
            rows = list(session.exec(statement).all())
        return rows, build_pagination(total, page_value, limit_value)

    def get_position_stats(self) -> PositionStatsRead:
        with self._session() as session:
            total = count_rows(session, Position)
            active = count_rows(session, Position, col(Position.is_active).is_(True))
            filled_statement = (
                sa.select(sa.func.count(sa.distinct(col(PositionAssignment.position_id))))
                .select_from(PositionAssignment)
                .join(Position, col(Position.id) == col(PositionAssignment.position_id))
                .where(col(Position.is_active).is_(True))
                .where(active_assignment_clause())
            )
            filled = int(session.execute(filled_statement).scalar_one())
        return PositionStatsRead(
            total=total,
            active=active,
            inactive=total - active,
            filled=filled,
            vacant=active - filled,
        )

    def list_subordinates(self, position_id: str) -> list[Position]:
        with self._session() as session:
            position = self._get_position(session, position_id)
            return hierarchy_service.list_subordinates(session, position.id)

    def get_reporting_chain(self, position_id: str) -> list[Position]:
        with self._session() as session:
            position = self._get_position(session, position_id)
            return hierarchy_service.reporting_chain(session, position.id)

    def get_organization_chart(self) -> tuple[list[Department], list[Position]]:
        with self._session() as session:
            departments = list(
                session.exec(
                    select(Department)
                    .where(col(Department.is_active).is_(True))
                    .order_by(col(Department.name))
                ).all()
            )
            positions = list(
                session.exec(
                    select(Position)
                    .where(col(Position.is_active).is_(True))
                    .order_by(col(Position.title))
                ).all()
            )
        return departments, positions
