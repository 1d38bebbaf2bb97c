from __future__ import annotations

import structlog
from sqlmodel import Session, col, select

from org_structure.domain.models import Position
from org_structure.services.common import count_rows

LOGGER = structlog.get_logger(__name__)


def _parent_of(session: Session, position_id: str) -> str | None:
    return session.exec(
        select(Position.reports_to_position_id).where(Position.id == position_id)
    ).first()


def would_create_cycle(session: Session, position_id: str, proposed_reports_to_id: str | None) -> bool:
    """Whether pointing ``position_id`` at ``proposed_reports_to_id`` closes a loop.

    Walks upward from the proposed parent. A node seen twice means the stored
    graph is already cyclic above this point; the walk stops and reports no new
    cycle rather than spinning.
    """
    if proposed_reports_to_id is None:
        return False
    visited: set[str] = set()
    current: str | None = proposed_reports_to_id
    while current is not None:
        if current == position_id:
            return True
        if current in visited:
            LOGGER.warning(
                "org.hierarchy.existing_cycle_detected",
                position_id=position_id,
                revisited_position_id=current,
            )
            return False
        visited.add(current)
        current = _parent_of(session, current)
    return False


def reporting_chain(session: Session, position_id: str) -> list[Position]:
    """Ancestors of a position, nearest manager first."""
    chain: list[Position] = []
    visited: set[str] = {position_id}
    current = _parent_of(session, position_id)
    while current is not None:
        if current in visited:
            LOGGER.warning(
                "org.hierarchy.existing_cycle_detected",
                position_id=position_id,
                revisited_position_id=current,
            )
            break
        visited.add(current)
        ancestor = session.get(Position, current)
        if ancestor is None:
            break
        chain.append(ancestor)
        current = ancestor.reports_to_position_id
    return chain


def list_subordinates(session: Session, position_id: str) -> list[Position]:
    statement = (
        select(Position)
        .where(Position.reports_to_position_id == position_id)
        .where(col(Position.is_active).is_(True))
        .order_by(col(Position.title))
    )
    return list(session.exec(statement).all())


def count_active_subordinates(session: Session, position_id: str) -> int:
    return count_rows(
        session,
        Position,
        col(Position.reports_to_position_id) == position_id,
        col(Position.is_active).is_(True),
    )
