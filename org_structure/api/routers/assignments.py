from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, Query, status

from org_structure.api.deps import get_current_claims, require_perm
from org_structure.api.errors import handle_org_error
from org_structure.domain.models import AssignmentCreate, AssignmentEndRequest, AssignmentRead, Page
from org_structure.domain.permissions import PERM_ORG_READ, PERM_ORG_WRITE
from org_structure.services.assignment_service import AssignmentService
from org_structure.services.errors import OrgStructureError

router = APIRouter()


def get_assignment_service() -> AssignmentService:
    return AssignmentService()


Claims = Annotated[dict[str, Any], Depends(get_current_claims)]
Service = Annotated[AssignmentService, Depends(get_assignment_service)]


@router.post(
    "/assignments",
    response_model=AssignmentRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_ORG_WRITE))],
)
def assign_employee(payload: AssignmentCreate, claims: Claims, service: Service) -> AssignmentRead:
    try:
        assignment = service.assign_employee(payload, claims["sub"])
        return AssignmentRead.model_validate(assignment)
    except OrgStructureError as exc:
        handle_org_error(exc)
        raise


@router.get(
    "/assignments",
    response_model=Page[AssignmentRead],
    dependencies=[Depends(require_perm(PERM_ORG_READ))],
)
def search_assignments(
    service: Service,
    employee_id: str | None = None,
    position_id: str | None = None,
    department_id: str | None = None,
    active_only: bool = False,
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
) -> Page[AssignmentRead]:
    try:
        rows, pagination = service.search_assignments(
            employee_id=employee_id,
            position_id=position_id,
            department_id=department_id,
            active_only=active_only,
            page=page,
            limit=limit,
        )
    except OrgStructureError as exc:
        handle_org_error(exc)
        raise
    return Page[AssignmentRead](
        data=[AssignmentRead.model_validate(item) for item in rows],
        pagination=pagination,
    )


@router.get(
    "/employees/{employee_id}/assignments",
    response_model=list[AssignmentRead],
    dependencies=[Depends(require_perm(PERM_ORG_READ))],
)
def get_employee_history(employee_id: str, service: Service) -> list[AssignmentRead]:
    try:
        rows = service.get_employee_history(employee_id)
    except OrgStructureError as exc:
        handle_org_error(exc)
        raise
    return [AssignmentRead.model_validate(item) for item in rows]


@router.get(
    "/employees/{employee_id}/assignments/current",
    response_model=AssignmentRead | None,
    dependencies=[Depends(require_perm(PERM_ORG_READ))],
)
def get_current_assignment(employee_id: str, service: Service) -> AssignmentRead | None:
    try:
        assignment = service.get_current_assignment(employee_id)
    except OrgStructureError as exc:
        handle_org_error(exc)
        raise
    return AssignmentRead.model_validate(assignment) if assignment is not None else None


@router.get(
    "/assignments/{assignment_id}",
    response_model=AssignmentRead,
    dependencies=[Depends(require_perm(PERM_ORG_READ))],
)
def get_assignment(assignment_id: str, service: Service) -> AssignmentRead:
    try:
        return AssignmentRead.model_validate(service.get_assignment(assignment_id))
    except OrgStructureError as exc:
        handle_org_error(exc)
        raise


@router.post(
    "/assignments/{assignment_id}/end",
    response_model=AssignmentRead,
    dependencies=[Depends(require_perm(PERM_ORG_WRITE))],
)
def end_assignment(
    assignment_id: str,
    payload: AssignmentEndRequest,
    claims: Claims,
    service: Service,
) -> AssignmentRead:
    try:
        assignment = service.end_assignment(assignment_id, payload, claims["sub"])
        return AssignmentRead.model_validate(assignment)
    except OrgStructureError as exc:
        handle_org_error(exc)
        raise
