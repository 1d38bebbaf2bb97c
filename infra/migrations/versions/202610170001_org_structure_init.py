"""org structure tables

Revision ID: 202610170001
Revises:
Create Date: 2026-10-17
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "202610170001"
down_revision = None
branch_labels = None
depends_on = None

REQUEST_TYPES = ("NEW_DEPARTMENT", "UPDATE_DEPARTMENT", "NEW_POSITION", "UPDATE_POSITION", "CLOSE_POSITION")
APPROVAL_DECISIONS = ("PENDING", "APPROVED", "REJECTED")
CHANGE_LOG_ACTIONS = ("CREATED", "UPDATED", "DEACTIVATED", "REASSIGNED")


def upgrade() -> None:
    op.create_table(
        "departments",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("code", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("budget", sa.Numeric(precision=14, scale=2), nullable=True),
        sa.Column("head_position_id", sa.String(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_departments_code", "departments", ["code"], unique=True)
    op.create_index("ix_departments_name", "departments", ["name"], unique=True)
    op.create_index("ix_departments_head_position_id", "departments", ["head_position_id"])
    op.create_index("ix_departments_is_active", "departments", ["is_active"])
    op.create_index("ix_departments_created_at", "departments", ["created_at"])
    op.create_index("ix_departments_updated_at", "departments", ["updated_at"])

    op.create_table(
        "positions",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("code", sa.String(), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("department_id", sa.String(), nullable=False),
        sa.Column("reports_to_position_id", sa.String(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["department_id"], ["departments.id"]),
        sa.ForeignKeyConstraint(["reports_to_position_id"], ["positions.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_positions_code", "positions", ["code"], unique=True)
    op.create_index("ix_positions_title", "positions", ["title"])
    op.create_index("ix_positions_department_id", "positions", ["department_id"])
    op.create_index("ix_positions_reports_to_position_id", "positions", ["reports_to_position_id"])
    op.create_index("ix_positions_is_active", "positions", ["is_active"])
    op.create_index("ix_positions_created_at", "positions", ["created_at"])
    op.create_index("ix_positions_updated_at", "positions", ["updated_at"])
    op.create_index("ix_positions_department_active", "positions", ["department_id", "is_active"])
    op.create_index("ix_positions_reports_to_active", "positions", ["reports_to_position_id", "is_active"])

    op.create_table(
        "structure_change_requests",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("request_number", sa.String(), nullable=False),
        sa.Column("requested_by_employee_id", sa.String(), nullable=False),
        sa.Column(
            "request_type",
            sa.Enum(*REQUEST_TYPES, name="structurerequesttype"),
            nullable=False,
        ),
        sa.Column("target_department_id", sa.String(), nullable=True),
        sa.Column("target_position_id", sa.String(), nullable=True),
        sa.Column("details", sa.String(), nullable=True),
        sa.Column("reason", sa.String(), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("submitted_by_employee_id", sa.String(), nullable=True),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["target_department_id"], ["departments.id"]),
        sa.ForeignKeyConstraint(["target_position_id"], ["positions.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_structure_change_requests_request_number",
        "structure_change_requests",
        ["request_number"],
        unique=True,
    )
    for column in (
        "requested_by_employee_id",
        "request_type",
        "target_department_id",
        "target_position_id",
        "status",
        "submitted_by_employee_id",
        "submitted_at",
        "created_at",
        "updated_at",
    ):
        op.create_index(f"ix_structure_change_requests_{column}", "structure_change_requests", [column])
    op.create_index(
        "ix_structure_change_requests_requester_type_status",
        "structure_change_requests",
        ["requested_by_employee_id", "request_type", "status"],
    )

    op.create_table(
        "position_assignments",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("employee_id", sa.String(), nullable=False),
        sa.Column("position_id", sa.String(), nullable=False),
        sa.Column("department_id", sa.String(), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=True),
        sa.Column("change_request_id", sa.String(), nullable=True),
        sa.Column("reason", sa.String(), nullable=True),
        sa.Column("notes", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["position_id"], ["positions.id"]),
        sa.ForeignKeyConstraint(["department_id"], ["departments.id"]),
        sa.ForeignKeyConstraint(["change_request_id"], ["structure_change_requests.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    for column in (
        "employee_id",
        "position_id",
        "department_id",
        "start_date",
        "end_date",
        "change_request_id",
        "created_at",
        "updated_at",
    ):
        op.create_index(f"ix_position_assignments_{column}", "position_assignments", [column])
    op.create_index(
        "ix_position_assignments_position_end",
        "position_assignments",
        ["position_id", "end_date"],
    )
    op.create_index(
        "uq_position_assignments_employee_open",
        "position_assignments",
        ["employee_id"],
        unique=True,
        postgresql_where=sa.text("end_date IS NULL"),
        sqlite_where=sa.text("end_date IS NULL"),
    )

    op.create_table(
        "structure_approvals",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("change_request_id", sa.String(), nullable=False),
        sa.Column("approver_employee_id", sa.String(), nullable=False),
        sa.Column(
            "decision",
            sa.Enum(*APPROVAL_DECISIONS, name="approvaldecision"),
            nullable=False,
        ),
        sa.Column("decided_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("comments", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["change_request_id"], ["structure_change_requests.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    for column in ("change_request_id", "approver_employee_id", "decision", "decided_at", "created_at"):
        op.create_index(f"ix_structure_approvals_{column}", "structure_approvals", [column])
    op.create_index(
        "ix_structure_approvals_request_approver",
        "structure_approvals",
        ["change_request_id", "approver_employee_id"],
    )

    op.create_table(
        "structure_change_logs",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column(
            "action",
            sa.Enum(*CHANGE_LOG_ACTIONS, name="changelogaction"),
            nullable=False,
        ),
        sa.Column("entity_type", sa.String(length=64), nullable=False),
        sa.Column("entity_id", sa.String(), nullable=False),
        sa.Column("performed_by_employee_id", sa.String(), nullable=True),
        sa.Column("summary", sa.String(), nullable=True),
        sa.Column("before_snapshot", sa.JSON(), nullable=True),
        sa.Column("after_snapshot", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    for column in ("action", "entity_type", "entity_id", "performed_by_employee_id", "created_at"):
        op.create_index(f"ix_structure_change_logs_{column}", "structure_change_logs", [column])
    op.create_index(
        "ix_structure_change_logs_entity",
        "structure_change_logs",
        ["entity_type", "entity_id"],
    )


def downgrade() -> None:
    op.drop_table("structure_change_logs")
    op.drop_table("structure_approvals")
    op.drop_index("uq_position_assignments_employee_open", table_name="position_assignments")
    op.drop_table("position_assignments")
    op.drop_table("structure_change_requests")
    op.drop_table("positions")
    op.drop_table("departments")
    sa.Enum(name="changelogaction").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="approvaldecision").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="structurerequesttype").drop(op.get_bind(), checkfirst=True)
