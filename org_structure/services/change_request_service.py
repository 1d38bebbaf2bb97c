from __future__ import annotations

import secrets
import string
from contextlib import nullcontext
from typing import Any

import sqlalchemy as sa
import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.sql.elements import ColumnElement
from sqlmodel import Session, col, select

from org_structure.adapters.base import StructureCollaborators
from org_structure.adapters.event_bus_adapter import default_collaborators
from org_structure.domain.models import (
    ChangeLogAction,
    ChangeRequestCreate,
    ChangeRequestUpdate,
    Department,
    PaginationRead,
    Position,
    StructureChangeRequest,
    StructureRequestType,
    now_utc,
)
from org_structure.domain.state_machine import (
    CANCELABLE_STATUSES,
    NON_TERMINAL_STATUSES,
    PENDING_REVIEW_STATUSES,
    StructureRequestStatus,
    can_transition,
    is_editable,
    normalize_status,
)
from org_structure.infra.audit import ENTITY_CHANGE_REQUEST, record_change, snapshot
from org_structure.infra.best_effort import best_effort
from org_structure.infra.db import get_engine
from org_structure.infra.locks import LockUnavailableError, org_lock
from org_structure.services.common import (
    build_pagination,
    count_rows,
    normalize_paging,
    optional_uuid,
    require_uuid,
)
from org_structure.services.errors import ConflictError, InvalidArgumentError, NotFoundError

LOGGER = structlog.get_logger(__name__)

REQUEST_NUMBER_ALPHABET = string.ascii_uppercase + string.digits


def generate_request_number() -> str:
    """``REQ-<epoch milliseconds>-<5 uppercase alphanumerics>``."""
    millis = int(now_utc().timestamp() * 1000)
    suffix = "".join(secrets.choice(REQUEST_NUMBER_ALPHABET) for _ in range(5))
    return f"REQ-{millis}-{suffix}"


def status_in(statuses: frozenset[str]) -> ColumnElement[bool]:
    return sa.func.upper(col(StructureChangeRequest.status)).in_(sorted(statuses))


def _matches_target(column: object, value: str | None) -> ColumnElement[bool]:
    return col(column).is_(None) if value is None else col(column) == value


def request_status_lock_name(change_request_id: str) -> str:
    return f"change-request-status:{change_request_id}"


def submission_lock_name(
    requester_id: str,
    request_type: StructureRequestType,
    target_department_id: str | None,
    target_position_id: str | None,
) -> str:
    return ":".join(
        [
            "change-request",
            requester_id,
            request_type.value,
            target_department_id or "-",
            target_position_id or "-",
        ]
    )


class ChangeRequestService:
    def __init__(self, collaborators: StructureCollaborators | None = None) -> None:
        self._collaborators = collaborators or default_collaborators()

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _get_request(self, session: Session, change_request_id: str) -> StructureChangeRequest:
        require_uuid(change_request_id, "change request ID")
        request = session.get(StructureChangeRequest, change_request_id)
        if request is None:
            raise NotFoundError("Change request not found")
        return request

    def _resolve_target_name(
        self,
        session: Session,
        target_department_id: str | None,
        target_position_id: str | None,
    ) -> str:
        if target_position_id is not None:
            position = session.get(Position, target_position_id)
            if position is None:
                raise NotFoundError("Target position not found")
        else:
            position = None
        if target_department_id is not None:
            department = session.get(Department, target_department_id)
            if department is None:
                raise NotFoundError("Target department not found")
        else:
            department = None
        if position is not None:
            return position.title
        if department is not None:
            return department.name
        return "N/A"

    def _ensure_no_open_duplicate(
        self,
        session: Session,
        requester_id: str,
        request_type: StructureRequestType,
        target_department_id: str | None,
        target_position_id: str | None,
        exclude_id: str | None = None,
    ) -> None:
        statement = (
            select(StructureChangeRequest)
            .where(StructureChangeRequest.requested_by_employee_id == requester_id)
            .where(StructureChangeRequest.request_type == request_type)
            .where(_matches_target(StructureChangeRequest.target_department_id, target_department_id))
            .where(_matches_target(StructureChangeRequest.target_position_id, target_position_id))
            .where(status_in(NON_TERMINAL_STATUSES))
        )
        if exclude_id is not None:
            statement = statement.where(StructureChangeRequest.id != exclude_id)
        if session.exec(statement).first() is not None:
            raise ConflictError("A similar pending request already exists")

    def create_request(self, payload: ChangeRequestCreate, requester_id: str) -> StructureChangeRequest:
        require_uuid(requester_id, "requester ID")
        optional_uuid(payload.target_department_id, "target department ID")
        optional_uuid(payload.target_position_id, "target position ID")
        lock_name = submission_lock_name(
            requester_id,
            payload.request_type,
            payload.target_department_id,
            payload.target_position_id,
        )
        try:
            with org_lock(lock_name):
                request, target_name = self._create_locked(payload, requester_id)
        except LockUnavailableError as exc:
            raise ConflictError("A similar request is being submitted") from exc

        record_change(
            action=ChangeLogAction.CREATED,
            entity_type=ENTITY_CHANGE_REQUEST,
            entity_id=request.id,
            performed_by=requester_id,
            summary=f"Change request {request.request_number} submitted",
            after=request,
        )
        best_effort(
            "notify_change_request_submitted",
            self._collaborators.notifications.notify_change_request_submitted,
            request.request_number,
            requester_id,
            request.request_type.value,
            target_name,
        )
        LOGGER.info(
            "org.change_request.submitted",
            change_request_id=request.id,
            request_number=request.request_number,
            request_type=request.request_type.value,
        )
        return request

    def _create_locked(
        self,
        payload: ChangeRequestCreate,
        requester_id: str,
    ) -> tuple[StructureChangeRequest, str]:
        with self._session() as session:
            target_name = self._resolve_target_name(
                session,
                payload.target_department_id,
                payload.target_position_id,
            )
            self._ensure_no_open_duplicate(
                session,
                requester_id,
                payload.request_type,
                payload.target_department_id,
                payload.target_position_id,
            )

            now = now_utc()
            request = StructureChangeRequest(
                request_number=generate_request_number(),
                requested_by_employee_id=requester_id,
                request_type=payload.request_type,
                target_department_id=payload.target_department_id,
                target_position_id=payload.target_position_id,
                details=payload.details,
                reason=payload.reason,
                status=StructureRequestStatus.SUBMITTED.value,
                submitted_by_employee_id=requester_id,
                submitted_at=now,
                created_at=now,
                updated_at=now,
            )
            session.add(request)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("Request number collision, please retry") from exc
            session.refresh(request)
            return request, target_name

    def update_request(
        self,
        change_request_id: str,
        payload: ChangeRequestUpdate,
        performed_by: str | None,
    ) -> StructureChangeRequest:
        require_uuid(change_request_id, "change request ID")
        try:
            with org_lock(request_status_lock_name(change_request_id)):
                request, before = self._update_locked(change_request_id, payload)
        except LockUnavailableError as exc:
            raise ConflictError("Another change to this request is in progress") from exc

        record_change(
            action=ChangeLogAction.UPDATED,
            entity_type=ENTITY_CHANGE_REQUEST,
            entity_id=request.id,
            performed_by=performed_by,
            summary=f"Change request {request.request_number} updated",
            before=before,
            after=request,
        )
        return request

    def _update_locked(
        self,
        change_request_id: str,
        payload: ChangeRequestUpdate,
    ) -> tuple[StructureChangeRequest, dict[str, Any] | None]:
        fields_set = payload.model_fields_set
        with self._session() as session:
            request = self._get_request(session, change_request_id)
            if not is_editable(request.status):
                raise InvalidArgumentError(f"Cannot update request with status {request.status}")
            before = snapshot(request)

            target_department_id = request.target_department_id
            target_position_id = request.target_position_id
            if "target_department_id" in fields_set:
                target_department_id = optional_uuid(payload.target_department_id, "target department ID")
            if "target_position_id" in fields_set:
                target_position_id = optional_uuid(payload.target_position_id, "target position ID")
            self._resolve_target_name(
                session,
                payload.target_department_id if "target_department_id" in fields_set else None,
                payload.target_position_id if "target_position_id" in fields_set else None,
            )

            retargeted = (target_department_id, target_position_id) != (
                request.target_department_id,
                request.target_position_id,
            )
            # A new target tuple is claimed under the same lock a fresh submission takes.
            guard = (
                org_lock(
                    submission_lock_name(
                        request.requested_by_employee_id,
                        StructureRequestType(request.request_type),
                        target_department_id,
                        target_position_id,
                    )
                )
                if retargeted
                else nullcontext()
            )
            with guard:
                if retargeted:
                    self._ensure_no_open_duplicate(
                        session,
                        request.requested_by_employee_id,
                        request.request_type,
                        target_department_id,
                        target_position_id,
                        exclude_id=request.id,
                    )
                request.target_department_id = target_department_id
                request.target_position_id = target_position_id
                if "details" in fields_set:
                    request.details = payload.details
                if "reason" in fields_set:
                    request.reason = payload.reason
                if "status" in fields_set and payload.status is not None:
                    request.status = payload.status.value
                request.updated_at = now_utc()
                session.add(request)
                session.commit()
            session.refresh(request)
            return request, before

    def cancel_request(self, change_request_id: str, performed_by: str | None) -> StructureChangeRequest:
        require_uuid(change_request_id, "change request ID")
        try:
            with org_lock(request_status_lock_name(change_request_id)):
                request, before = self._cancel_locked(change_request_id)
        except LockUnavailableError as exc:
            raise ConflictError("Another change to this request is in progress") from exc

        record_change(
            action=ChangeLogAction.UPDATED,
            entity_type=ENTITY_CHANGE_REQUEST,
            entity_id=request.id,
            performed_by=performed_by,
            summary=f"Change request {request.request_number} canceled",
            before=before,
            after=request,
        )
        return request

    def _cancel_locked(self, change_request_id: str) -> tuple[StructureChangeRequest, dict[str, Any] | None]:
        with self._session() as session:
            request = self._get_request(session, change_request_id)
            if not can_transition(request.status, StructureRequestStatus.CANCELED):
                raise InvalidArgumentError(f"Cannot cancel request with status {request.status}")
            before = snapshot(request)
            result = session.execute(
                sa.update(StructureChangeRequest)
                .where(col(StructureChangeRequest.id) == request.id)
                .where(status_in(CANCELABLE_STATUSES))
                .values(status=StructureRequestStatus.CANCELED.value, updated_at=now_utc())
            )
            if result.rowcount == 0:
                session.rollback()
                raise ConflictError("Change request status changed while canceling")
            session.commit()
            session.refresh(request)
            return request, before

    def get_request(self, change_request_id: str) -> StructureChangeRequest:
        with self._session() as session:
            return self._get_request(session, change_request_id)

    def get_request_by_number(self, request_number: str) -> StructureChangeRequest:
        with self._session() as session:
            request = session.exec(
                select(StructureChangeRequest).where(StructureChangeRequest.request_number == request_number)
            ).first()
            if request is None:
                raise NotFoundError("Change request not found")
            return request

    def search_requests(
        self,
        *,
        status: str | None = None,
        request_type: StructureRequestType | None = None,
        requested_by_employee_id: str | None = None,
        page: int | None = None,
        limit: int | None = None,
    ) -> tuple[list[StructureChangeRequest], PaginationRead]:
        optional_uuid(requested_by_employee_id, "requester ID")
        page_value, limit_value = normalize_paging(page, limit)
        clauses: list[ColumnElement[bool]] = []
        if status:
            clauses.append(sa.func.upper(col(StructureChangeRequest.status)) == normalize_status(status))
        if request_type is not None:
            clauses.append(col(StructureChangeRequest.request_type) == request_type)
        if requested_by_employee_id is not None:
            clauses.append(col(StructureChangeRequest.requested_by_employee_id) == requested_by_employee_id)

        with self._session() as session:
            total = count_rows(session, StructureChangeRequest, *clauses)
            statement = select(StructureChangeRequest)
            for clause in clauses:
                statement = statement.where(clause)
            statement = (
                statement.order_by(col(StructureChangeRequest.created_at).desc())
                .offset((page_value - 1) * limit_value)
                .limit(limit_value)
            )
            rows = list(session.exec(statement).all())
        return rows, build_pagination(total, page_value, limit_value)

    def count_pending_requests(self) -> int:
        with self._session() as session:
            return count_rows(session, StructureChangeRequest, status_in(PENDING_REVIEW_STATUSES))
