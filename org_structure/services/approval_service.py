from __future__ import annotations

from typing import Any

import sqlalchemy as sa
import structlog
from sqlmodel import Session, col, select

from org_structure.adapters.base import StructureCollaborators
from org_structure.adapters.event_bus_adapter import default_collaborators
from org_structure.domain.models import (
    ApprovalDecision,
    ApprovalDecisionRequest,
    ChangeLogAction,
    StructureApproval,
    StructureChangeRequest,
    now_utc,
)
from org_structure.domain.state_machine import (
    ACTIONABLE_STATUSES,
    StructureRequestStatus,
    can_transition,
    is_actionable,
)
from org_structure.infra.audit import ENTITY_APPROVAL, ENTITY_CHANGE_REQUEST, record_change, snapshot
from org_structure.infra.best_effort import best_effort
from org_structure.infra.db import get_engine
from org_structure.infra.locks import LockUnavailableError, org_lock
from org_structure.services.change_request_service import request_status_lock_name, status_in
from org_structure.services.common import require_uuid
from org_structure.services.errors import ConflictError, InvalidArgumentError, NotFoundError

LOGGER = structlog.get_logger(__name__)

DECISION_TO_STATUS: dict[ApprovalDecision, StructureRequestStatus] = {
    ApprovalDecision.APPROVED: StructureRequestStatus.APPROVED,
    ApprovalDecision.REJECTED: StructureRequestStatus.REJECTED,
}

DECISION_VERBS: dict[ApprovalDecision, str] = {
    ApprovalDecision.APPROVED: "approve",
    ApprovalDecision.REJECTED: "reject",
    ApprovalDecision.PENDING: "review",
}


class ApprovalService:
    """Records approver decisions; the first non-pending decision settles the request."""

    def __init__(self, collaborators: StructureCollaborators | None = None) -> None:
        self._collaborators = collaborators or default_collaborators()

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def submit_decision(
        self,
        change_request_id: str,
        approver_id: str,
        payload: ApprovalDecisionRequest,
    ) -> StructureApproval:
        require_uuid(change_request_id, "change request ID")
        require_uuid(approver_id, "approver ID")
        try:
            with org_lock(request_status_lock_name(change_request_id)):
                approval, request, request_before = self._decide_locked(change_request_id, approver_id, payload)
        except LockUnavailableError as exc:
            raise ConflictError("Another decision on this request is in progress") from exc

        decision = payload.decision
        record_change(
            action=ChangeLogAction.UPDATED,
            entity_type=ENTITY_APPROVAL,
            entity_id=approval.id,
            performed_by=approver_id,
            summary=f"Change request {request.request_number} {decision.value.lower()}",
            after=approval,
        )
        if request_before is not None:
            record_change(
                action=ChangeLogAction.UPDATED,
                entity_type=ENTITY_CHANGE_REQUEST,
                entity_id=request.id,
                performed_by=approver_id,
                summary=(
                    f"Change request {request.request_number} status "
                    f"{request_before['status']} -> {request.status}"
                ),
                before=request_before,
                after=request,
            )
            best_effort(
                "notify_change_request_processed",
                self._collaborators.notifications.notify_change_request_processed,
                request.requested_by_employee_id,
                request.request_number,
                decision.value,
                approval.comments,
            )
        LOGGER.info(
            "org.change_request.decided",
            change_request_id=change_request_id,
            approval_id=approval.id,
            decision=decision.value,
        )
        return approval

    def _decide_locked(
        self,
        change_request_id: str,
        approver_id: str,
        payload: ApprovalDecisionRequest,
    ) -> tuple[StructureApproval, StructureChangeRequest, dict[str, Any] | None]:
        decision = payload.decision
        comments = payload.comments.strip() if payload.comments else None
        new_status = DECISION_TO_STATUS.get(decision)

        with self._session() as session:
            request = session.get(StructureChangeRequest, change_request_id)
            if request is None:
                raise NotFoundError("Change request not found")
            existing = session.exec(
                select(StructureApproval)
                .where(StructureApproval.change_request_id == change_request_id)
                .where(StructureApproval.approver_employee_id == approver_id)
                .where(StructureApproval.decision != ApprovalDecision.PENDING)
            ).first()
            if existing is not None:
                raise ConflictError("This approver has already submitted a decision")
            allowed = (
                can_transition(request.status, new_status)
                if new_status is not None
                else is_actionable(request.status)
            )
            if not allowed:
                raise InvalidArgumentError(
                    f"Cannot {DECISION_VERBS[decision]} request with status {request.status}"
                )
            if decision == ApprovalDecision.REJECTED and not comments:
                raise InvalidArgumentError("Comments are required when rejecting a request")

            now = now_utc()
            approval = StructureApproval(
                change_request_id=change_request_id,
                approver_employee_id=approver_id,
                decision=decision,
                decided_at=now,
                comments=comments,
            )
            session.add(approval)
            request_before = None
            if new_status is not None:
                request_before = snapshot(request)
                # Settles only a request that is still open; a stale read loses here.
                result = session.execute(
                    sa.update(StructureChangeRequest)
                    .where(col(StructureChangeRequest.id) == change_request_id)
                    .where(status_in(ACTIONABLE_STATUSES))
                    .values(status=new_status.value, updated_at=now)
                )
                if result.rowcount == 0:
                    session.rollback()
                    raise ConflictError("Change request was already decided")
            session.commit()
            session.refresh(approval)
            session.refresh(request)
            return approval, request, request_before

    def list_approvals(self, change_request_id: str) -> list[StructureApproval]:
        require_uuid(change_request_id, "change request ID")
        with self._session() as session:
            if session.get(StructureChangeRequest, change_request_id) is None:
                raise NotFoundError("Change request not found")
            statement = (
                select(StructureApproval)
                .where(StructureApproval.change_request_id == change_request_id)
                .order_by(col(StructureApproval.created_at).desc())
            )
            return list(session.exec(statement).all())
