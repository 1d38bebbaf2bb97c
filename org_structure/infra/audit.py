from __future__ import annotations

from typing import Any

import structlog
from pydantic import BaseModel
from sqlmodel import Session

from org_structure.domain.models import ChangeLogAction, StructureChangeLog
from org_structure.infra.db import get_engine

LOGGER = structlog.get_logger(__name__)

ENTITY_DEPARTMENT = "Department"
ENTITY_POSITION = "Position"
ENTITY_ASSIGNMENT = "PositionAssignment"
ENTITY_CHANGE_REQUEST = "StructureChangeRequest"
ENTITY_APPROVAL = "StructureApproval"

Snapshot = BaseModel | dict[str, Any] | None


def snapshot(entity: Snapshot) -> dict[str, Any] | None:
    if entity is None or isinstance(entity, dict):
        return entity
    return entity.model_dump(mode="json")


def record_change(
    *,
    action: ChangeLogAction,
    entity_type: str,
    entity_id: str,
    performed_by: str | None,
    summary: str | None = None,
    before: Snapshot = None,
    after: Snapshot = None,
) -> StructureChangeLog | None:
    """Append one change-log row in a session of its own.

    Runs after the primary mutation has committed. A failure here is logged and
    swallowed so the caller's result stands.
    """
    try:
        row = StructureChangeLog(
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            performed_by_employee_id=performed_by,
            summary=summary,
            before_snapshot=snapshot(before),
            after_snapshot=snapshot(after),
        )
        with Session(get_engine(), expire_on_commit=False) as session:
            session.add(row)
            session.commit()
            session.refresh(row)
    except Exception:
        LOGGER.error(
            "org.audit.write_failed",
            action=str(action),
            entity_type=entity_type,
            entity_id=entity_id,
            exc_info=True,
        )
        return None
    return row
