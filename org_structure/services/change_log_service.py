from __future__ import annotations

from sqlmodel import Session, col, select

from org_structure.domain.models import PaginationRead, StructureChangeLog
from org_structure.infra.db import get_engine
from org_structure.services.common import build_pagination, count_rows, normalize_paging


class ChangeLogService:
    """Read side of the audit trail; rows are written by ``infra.audit`` only."""

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def list_entity_changes(
        self,
        entity_type: str,
        entity_id: str,
        *,
        page: int | None = None,
        limit: int | None = None,
    ) -> tuple[list[StructureChangeLog], PaginationRead]:
        page_value, limit_value = normalize_paging(page, limit)
        clauses = [
            col(StructureChangeLog.entity_type) == entity_type,
            col(StructureChangeLog.entity_id) == entity_id,
        ]
        with self._session() as session:
            total = count_rows(session, StructureChangeLog, *clauses)
            statement = select(StructureChangeLog)
            for clause in clauses:
                statement = statement.where(clause)
            statement = (
                statement.order_by(col(StructureChangeLog.created_at).desc())
                .offset((page_value - 1) * limit_value)
                .limit(limit_value)
            )
            rows = list(session.exec(statement).all())
        return rows, build_pagination(total, page_value, limit_value)
