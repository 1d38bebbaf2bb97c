from __future__ import annotations

import math
from datetime import date
from typing import Any
from uuid import UUID

import sqlalchemy as sa
from sqlalchemy.sql.elements import ColumnElement
from sqlmodel import Session, col

from org_structure.domain.models import PaginationRead, PositionAssignment, today_utc
from org_structure.services.errors import InvalidArgumentError

DEFAULT_PAGE_LIMIT = 20
MAX_PAGE_LIMIT = 100


def require_uuid(value: str | None, field: str) -> str:
    try:
        UUID(str(value))
    except ValueError as exc:
        raise InvalidArgumentError(f"Invalid {field} format: {value}") from exc
    return str(value)


def optional_uuid(value: str | None, field: str) -> str | None:
    if value is None:
        return None
    return require_uuid(value, field)


def active_assignment_clause(on: date | None = None) -> ColumnElement[bool]:
    """Open, or ending strictly after ``on`` (today by default)."""
    reference = on or today_utc()
    return sa.or_(
        col(PositionAssignment.end_date).is_(None),
        col(PositionAssignment.end_date) > reference,
    )


def count_rows(session: Session, model: Any, *clauses: ColumnElement[bool]) -> int:
    statement = sa.select(sa.func.count()).select_from(model)
    for clause in clauses:
        statement = statement.where(clause)
    return int(session.execute(statement).scalar_one())


def normalize_paging(page: int | None, limit: int | None) -> tuple[int, int]:
    page_value = page if page and page > 0 else 1
    limit_value = limit if limit and limit > 0 else DEFAULT_PAGE_LIMIT
    return page_value, min(limit_value, MAX_PAGE_LIMIT)


def build_pagination(total: int, page: int, limit: int) -> PaginationRead:
    total_pages = math.ceil(total / limit) if limit else 0
    return PaginationRead(
        page=page,
        limit=limit,
        total=total,
        total_pages=total_pages,
        has_next_page=page < total_pages,
        has_prev_page=page > 1,
    )


def like_pattern(query: str) -> str:
    return f"%{query.strip().lower()}%"
