from __future__ import annotations

from datetime import UTC, date, datetime
from decimal import Decimal
from enum import StrEnum
from typing import Any, Generic, TypeVar
from uuid import uuid4

from pydantic import BaseModel, ConfigDict
from pydantic import Field as PydanticField
from sqlalchemy import JSON, Column, Index, text
from sqlmodel import Field, SQLModel

from org_structure.domain.state_machine import StructureRequestStatus

T = TypeVar("T")


def now_utc() -> datetime:
    return datetime.now(UTC)


def today_utc() -> date:
    return now_utc().date()


class StructureRequestType(StrEnum):
    NEW_DEPARTMENT = "NEW_DEPARTMENT"
    UPDATE_DEPARTMENT = "UPDATE_DEPARTMENT"
    NEW_POSITION = "NEW_POSITION"
    UPDATE_POSITION = "UPDATE_POSITION"
    CLOSE_POSITION = "CLOSE_POSITION"


class ApprovalDecision(StrEnum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class ChangeLogAction(StrEnum):
    CREATED = "CREATED"
    UPDATED = "UPDATED"
    DEACTIVATED = "DEACTIVATED"
    REASSIGNED = "REASSIGNED"


class Department(SQLModel, table=True):
    __tablename__ = "departments"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    code: str = Field(index=True, unique=True)
    name: str = Field(index=True, unique=True)
    description: str | None = None
    budget: Decimal | None = Field(default=None, max_digits=14, decimal_places=2)
    # Not a foreign key: departments and positions reference each other.
    head_position_id: str | None = Field(default=None, index=True)
    is_active: bool = Field(default=True, index=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc, index=True)


class Position(SQLModel, table=True):
    __tablename__ = "positions"
    __table_args__ = (
        Index("ix_positions_department_active", "department_id", "is_active"),
        Index("ix_positions_reports_to_active", "reports_to_position_id", "is_active"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    code: str = Field(index=True, unique=True)
    title: str = Field(index=True)
    description: str | None = None
    department_id: str = Field(foreign_key="departments.id", index=True)
    reports_to_position_id: str | None = Field(default=None, foreign_key="positions.id", index=True)
    is_active: bool = Field(default=True, index=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc, index=True)


class StructureChangeRequest(SQLModel, table=True):
    __tablename__ = "structure_change_requests"
    __table_args__ = (
        Index(
            "ix_structure_change_requests_requester_type_status",
            "requested_by_employee_id",
            "request_type",
            "status",
        ),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    request_number: str = Field(index=True, unique=True)
    requested_by_employee_id: str = Field(index=True)
    request_type: StructureRequestType = Field(index=True)
    target_department_id: str | None = Field(default=None, foreign_key="departments.id", index=True)
    target_position_id: str | None = Field(default=None, foreign_key="positions.id", index=True)
    details: str | None = None
    reason: str | None = None
    # Plain text so historical values outside the enum remain readable.
    status: str = Field(default=StructureRequestStatus.SUBMITTED, max_length=32, index=True)
    submitted_by_employee_id: str | None = Field(default=None, index=True)
    submitted_at: datetime | None = Field(default=None, index=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc, index=True)


class PositionAssignment(SQLModel, table=True):
    __tablename__ = "position_assignments"
    __table_args__ = (
        Index(
            "uq_position_assignments_employee_open",
            "employee_id",
            unique=True,
            sqlite_where=text("end_date IS NULL"),
            postgresql_where=text("end_date IS NULL"),
        ),
        Index("ix_position_assignments_position_end", "position_id", "end_date"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    employee_id: str = Field(index=True)
    position_id: str = Field(foreign_key="positions.id", index=True)
    department_id: str = Field(foreign_key="departments.id", index=True)
    start_date: date = Field(index=True)
    end_date: date | None = Field(default=None, index=True)
    change_request_id: str | None = Field(
        default=None,
        foreign_key="structure_change_requests.id",
        index=True,
    )
    reason: str | None = None
    notes: str | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc, index=True)


class StructureApproval(SQLModel, table=True):
    __tablename__ = "structure_approvals"
    __table_args__ = (
        Index(
            "ix_structure_approvals_request_approver",
            "change_request_id",
            "approver_employee_id",
        ),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    change_request_id: str = Field(foreign_key="structure_change_requests.id", index=True)
    approver_employee_id: str = Field(index=True)
    decision: ApprovalDecision = Field(default=ApprovalDecision.PENDING, index=True)
    decided_at: datetime | None = Field(default=None, index=True)
    comments: str | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)


class StructureChangeLog(SQLModel, table=True):
    __tablename__ = "structure_change_logs"
    __table_args__ = (Index("ix_structure_change_logs_entity", "entity_type", "entity_id"),)

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    action: ChangeLogAction = Field(index=True)
    entity_type: str = Field(max_length=64, index=True)
    entity_id: str = Field(index=True)
    performed_by_employee_id: str | None = Field(default=None, index=True)
    summary: str | None = None
    before_snapshot: dict[str, Any] | None = Field(
        default=None,
        sa_column=Column(JSON, nullable=True),
    )
    after_snapshot: dict[str, Any] | None = Field(
        default=None,
        sa_column=Column(JSON, nullable=True),
    )
    created_at: datetime = Field(default_factory=now_utc, index=True)


class EventEnvelope(BaseModel):
    event_id: str = PydanticField(default_factory=lambda: str(uuid4()))
    event_type: str
    ts: datetime = PydanticField(default_factory=now_utc)
    actor_id: str | None = None
    correlation_id: str | None = None
    payload: dict[str, Any] = PydanticField(default_factory=dict)


class ORMReadModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class PaginationRead(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int
    has_next_page: bool
    has_prev_page: bool


class Page(BaseModel, Generic[T]):
    data: list[T]
    pagination: PaginationRead


class DepartmentCreate(BaseModel):
    code: str = PydanticField(min_length=1)
    name: str = PydanticField(min_length=1)
    description: str | None = None
    budget: Decimal | None = None
    head_position_id: str | None = None
    is_active: bool = True


class DepartmentUpdate(BaseModel):
    code: str | None = PydanticField(default=None, min_length=1)
    name: str | None = PydanticField(default=None, min_length=1)
    description: str | None = None
    budget: Decimal | None = None
    head_position_id: str | None = None


class DepartmentRead(ORMReadModel):
    id: str
    code: str
    name: str
    description: str | None = None
    budget: Decimal | None = None
    head_position_id: str | None = None
    is_active: bool
    created_at: datetime
    updated_at: datetime


class PositionCreate(BaseModel):
    code: str = PydanticField(min_length=1)
    title: str = PydanticField(min_length=1)
    description: str | None = None
    department_id: str
    reports_to_position_id: str | None = None


class PositionUpdate(BaseModel):
    code: str | None = PydanticField(default=None, min_length=1)
    title: str | None = PydanticField(default=None, min_length=1)
    description: str | None = None
    department_id: str | None = None
    reports_to_position_id: str | None = None


class PositionDeactivateRequest(BaseModel):
    reason: str | None = None


class PositionRead(ORMReadModel):
    id: str
    code: str
    title: str
    description: str | None = None
    department_id: str
    reports_to_position_id: str | None = None
    is_active: bool
    created_at: datetime
    updated_at: datetime


class AssignmentCreate(BaseModel):
    employee_id: str
    position_id: str
    department_id: str | None = None
    start_date: date
    change_request_id: str | None = None
    reason: str | None = None
    notes: str | None = None


class AssignmentEndRequest(BaseModel):
    end_date: date
    reason: str | None = None
    notes: str | None = None
    change_request_id: str | None = None


class AssignmentRead(ORMReadModel):
    id: str
    employee_id: str
    position_id: str
    department_id: str
    start_date: date
    end_date: date | None = None
    change_request_id: str | None = None
    reason: str | None = None
    notes: str | None = None
    created_at: datetime
    updated_at: datetime


class ChangeRequestCreate(BaseModel):
    request_type: StructureRequestType
    target_department_id: str | None = None
    target_position_id: str | None = None
    details: str | None = None
    reason: str | None = None


class ChangeRequestUpdate(BaseModel):
    target_department_id: str | None = None
    target_position_id: str | None = None
    details: str | None = None
    reason: str | None = None
    status: StructureRequestStatus | None = None


class ChangeRequestRead(ORMReadModel):
    id: str
    request_number: str
    requested_by_employee_id: str
    request_type: StructureRequestType
    target_department_id: str | None = None
    target_position_id: str | None = None
    details: str | None = None
    reason: str | None = None
    status: str
    submitted_by_employee_id: str | None = None
    submitted_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class ApprovalDecisionRequest(BaseModel):
    decision: ApprovalDecision
    comments: str | None = None


class ApprovalRead(ORMReadModel):
    id: str
    change_request_id: str
    approver_employee_id: str
    decision: ApprovalDecision
    decided_at: datetime | None = None
    comments: str | None = None
    created_at: datetime


class ChangeLogRead(ORMReadModel):
    id: str
    action: ChangeLogAction
    entity_type: str
    entity_id: str
    performed_by_employee_id: str | None = None
    summary: str | None = None
    before_snapshot: dict[str, Any] | None = None
    after_snapshot: dict[str, Any] | None = None
    created_at: datetime


class DepartmentHierarchyRead(BaseModel):
    department: DepartmentRead
    positions: list[PositionRead]
    assignments: list[AssignmentRead]


class OrganizationChartRead(BaseModel):
    departments: list[DepartmentRead]
    positions: list[PositionRead]


class DepartmentStatsRead(BaseModel):
    total: int
    active: int
    inactive: int


class PositionStatsRead(BaseModel):
    total: int
    active: int
    inactive: int
    filled: int
    vacant: int


class PendingCountRead(BaseModel):
    count: int
