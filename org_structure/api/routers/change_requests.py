from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, Query, status

from org_structure.api.deps import get_current_claims, require_perm
from org_structure.api.errors import handle_org_error
from org_structure.domain.models import (
    ApprovalDecisionRequest,
    ApprovalRead,
    ChangeRequestCreate,
    ChangeRequestRead,
    ChangeRequestUpdate,
    Page,
    PendingCountRead,
    StructureRequestType,
)
from org_structure.domain.permissions import PERM_ORG_APPROVE, PERM_ORG_READ, PERM_ORG_REQUEST
from org_structure.services.approval_service import ApprovalService
from org_structure.services.change_request_service import ChangeRequestService
from org_structure.services.errors import OrgStructureError

router = APIRouter()


def get_change_request_service() -> ChangeRequestService:
    return ChangeRequestService()


def get_approval_service() -> ApprovalService:
    return ApprovalService()


Claims = Annotated[dict[str, Any], Depends(get_current_claims)]
Service = Annotated[ChangeRequestService, Depends(get_change_request_service)]
Approvals = Annotated[ApprovalService, Depends(get_approval_service)]


@router.post(
    "/change-requests",
    response_model=ChangeRequestRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_ORG_REQUEST))],
)
def create_change_request(
    payload: ChangeRequestCreate,
    claims: Claims,
    service: Service,
) -> ChangeRequestRead:
    try:
        request = service.create_request(payload, claims["sub"])
        return ChangeRequestRead.model_validate(request)
    except OrgStructureError as exc:
        handle_org_error(exc)
        raise


@router.get(
    "/change-requests",
    response_model=Page[ChangeRequestRead],
    dependencies=[Depends(require_perm(PERM_ORG_READ))],
)
def search_change_requests(
    service: Service,
    status_filter: Annotated[str | None, Query(alias="status")] = None,
    request_type: StructureRequestType | None = None,
    requested_by: str | None = None,
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
) -> Page[ChangeRequestRead]:
    try:
        rows, pagination = service.search_requests(
            status=status_filter,
            request_type=request_type,
            requested_by_employee_id=requested_by,
            page=page,
            limit=limit,
        )
    except OrgStructureError as exc:
        handle_org_error(exc)
        raise
    return Page[ChangeRequestRead](
        data=[ChangeRequestRead.model_validate(item) for item in rows],
        pagination=pagination,
    )


@router.get(
    "/change-requests/count/pending",
    response_model=PendingCountRead,
    dependencies=[Depends(require_perm(PERM_ORG_READ))],
)
def count_pending_change_requests(service: Service) -> PendingCountRead:
    return PendingCountRead(count=service.count_pending_requests())


@router.get(
    "/change-requests/by-number/{request_number}",
    response_model=ChangeRequestRead,
    dependencies=[Depends(require_perm(PERM_ORG_READ))],
)
def get_change_request_by_number(request_number: str, service: Service) -> ChangeRequestRead:
    try:
        return ChangeRequestRead.model_validate(service.get_request_by_number(request_number))
    except OrgStructureError as exc:
        handle_org_error(exc)
        raise


@router.get(
    "/change-requests/{change_request_id}",
    response_model=ChangeRequestRead,
    dependencies=[Depends(require_perm(PERM_ORG_READ))],
)
def get_change_request(change_request_id: str, service: Service) -> ChangeRequestRead:
    try:
        return ChangeRequestRead.model_validate(service.get_request(change_request_id))
    except OrgStructureError as exc:
        handle_org_error(exc)
        raise


@router.patch(
    "/change-requests/{change_request_id}",
    response_model=ChangeRequestRead,
    dependencies=[Depends(require_perm(PERM_ORG_REQUEST))],
)
def update_change_request(
    change_request_id: str,
    payload: ChangeRequestUpdate,
    claims: Claims,
    service: Service,
) -> ChangeRequestRead:
    try:
        request = service.update_request(change_request_id, payload, claims["sub"])
        return ChangeRequestRead.model_validate(request)
    except OrgStructureError as exc:
        handle_org_error(exc)
        raise


@router.post(
    "/change-requests/{change_request_id}/cancel",
    response_model=ChangeRequestRead,
    dependencies=[Depends(require_perm(PERM_ORG_REQUEST))],
)
def cancel_change_request(change_request_id: str, claims: Claims, service: Service) -> ChangeRequestRead:
    try:
        request = service.cancel_request(change_request_id, claims["sub"])
        return ChangeRequestRead.model_validate(request)
    except OrgStructureError as exc:
        handle_org_error(exc)
        raise


@router.post(
    "/change-requests/{change_request_id}/approvals",
    response_model=ApprovalRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_ORG_APPROVE))],
)
def submit_decision(
    change_request_id: str,
    payload: ApprovalDecisionRequest,
    claims: Claims,
    approvals: Approvals,
) -> ApprovalRead:
    try:
        approval = approvals.submit_decision(change_request_id, claims["sub"], payload)
        return ApprovalRead.model_validate(approval)
    except OrgStructureError as exc:
        handle_org_error(exc)
        raise


@router.get(
    "/change-requests/{change_request_id}/approvals",
    response_model=list[ApprovalRead],
    dependencies=[Depends(require_perm(PERM_ORG_READ))],
)
def list_approvals(change_request_id: str, approvals: Approvals) -> list[ApprovalRead]:
    try:
        rows = approvals.list_approvals(change_request_id)
    except OrgStructureError as exc:
        handle_org_error(exc)
        raise
    return [ApprovalRead.model_validate(item) for item in rows]
