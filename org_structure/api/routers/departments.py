from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, Query, status

from org_structure.api.deps import get_current_claims, require_perm
from org_structure.api.errors import handle_org_error
from org_structure.domain.models import (
    AssignmentRead,
    DepartmentCreate,
    DepartmentHierarchyRead,
    DepartmentRead,
    DepartmentStatsRead,
    DepartmentUpdate,
    Page,
    PositionRead,
)
from org_structure.domain.permissions import PERM_ORG_READ, PERM_ORG_WRITE
from org_structure.services.department_service import DepartmentService
from org_structure.services.errors import OrgStructureError

router = APIRouter()


def get_department_service() -> DepartmentService:
    return DepartmentService()


Claims = Annotated[dict[str, Any], Depends(get_current_claims)]
Service = Annotated[DepartmentService, Depends(get_department_service)]


@router.post(
    "/departments",
    response_model=DepartmentRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_ORG_WRITE))],
)
def create_department(payload: DepartmentCreate, claims: Claims, service: Service) -> DepartmentRead:
    try:
        department = service.create_department(payload, claims["sub"])
        return DepartmentRead.model_validate(department)
    except OrgStructureError as exc:
        handle_org_error(exc)
        raise


@router.get(
    "/departments",
    response_model=list[DepartmentRead],
    dependencies=[Depends(require_perm(PERM_ORG_READ))],
)
def list_departments(service: Service, is_active: bool | None = None) -> list[DepartmentRead]:
    return [DepartmentRead.model_validate(item) for item in service.list_departments(is_active)]


@router.get(
    "/departments/search",
    response_model=Page[DepartmentRead],
    dependencies=[Depends(require_perm(PERM_ORG_READ))],
)
def search_departments(
    service: Service,
    q: str | None = None,
    is_active: bool | None = None,
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
) -> Page[DepartmentRead]:
    rows, pagination = service.search_departments(query=q, is_active=is_active, page=page, limit=limit)
    return Page[DepartmentRead](
        data=[DepartmentRead.model_validate(item) for item in rows],
        pagination=pagination,
    )


@router.get(
    "/departments/stats",
    response_model=DepartmentStatsRead,
    dependencies=[Depends(require_perm(PERM_ORG_READ))],
)
def get_department_stats(service: Service) -> DepartmentStatsRead:
    return service.get_department_stats()


@router.get(
    "/departments/{department_id}",
    response_model=DepartmentRead,
    dependencies=[Depends(require_perm(PERM_ORG_READ))],
)
def get_department(department_id: str, service: Service) -> DepartmentRead:
    try:
        return DepartmentRead.model_validate(service.get_department(department_id))
    except OrgStructureError as exc:
        handle_org_error(exc)
        raise


@router.get(
    "/departments/{department_id}/hierarchy",
    response_model=DepartmentHierarchyRead,
    dependencies=[Depends(require_perm(PERM_ORG_READ))],
)
def get_department_hierarchy(department_id: str, service: Service) -> DepartmentHierarchyRead:
    try:
        department, positions, assignments = service.get_department_hierarchy(department_id)
    except OrgStructureError as exc:
        handle_org_error(exc)
        raise
    return DepartmentHierarchyRead(
        department=DepartmentRead.model_validate(department),
        positions=[PositionRead.model_validate(item) for item in positions],
        assignments=[AssignmentRead.model_validate(item) for item in assignments],
    )


@router.patch(
    "/departments/{department_id}",
    response_model=DepartmentRead,
    dependencies=[Depends(require_perm(PERM_ORG_WRITE))],
)
def update_department(
    department_id: str,
    payload: DepartmentUpdate,
    claims: Claims,
    service: Service,
) -> DepartmentRead:
    try:
        department = service.update_department(department_id, payload, claims["sub"])
        return DepartmentRead.model_validate(department)
    except OrgStructureError as exc:
        handle_org_error(exc)
        raise


@router.post(
    "/departments/{department_id}/deactivate",
    response_model=DepartmentRead,
    dependencies=[Depends(require_perm(PERM_ORG_WRITE))],
)
def deactivate_department(department_id: str, claims: Claims, service: Service) -> DepartmentRead:
    try:
        department = service.deactivate_department(department_id, claims["sub"])
        return DepartmentRead.model_validate(department)
    except OrgStructureError as exc:
        handle_org_error(exc)
        raise


@router.post(
    "/departments/{department_id}/reactivate",
    response_model=DepartmentRead,
    dependencies=[Depends(require_perm(PERM_ORG_WRITE))],
)
def reactivate_department(department_id: str, claims: Claims, service: Service) -> DepartmentRead:
    try:
        department = service.reactivate_department(department_id, claims["sub"])
        return DepartmentRead.model_validate(department)
    except OrgStructureError as exc:
        handle_org_error(exc)
        raise
