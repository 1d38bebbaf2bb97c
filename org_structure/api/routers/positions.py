from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Body, Depends, Query, status

from org_structure.api.deps import get_current_claims, require_perm
from org_structure.api.errors import handle_org_error
from org_structure.domain.models import (
    Page,
    PositionCreate,
    PositionDeactivateRequest,
    PositionRead,
    PositionStatsRead,
    PositionUpdate,
)
from org_structure.domain.permissions import PERM_ORG_READ, PERM_ORG_WRITE
from org_structure.services.errors import OrgStructureError
from org_structure.services.position_service import PositionService

router = APIRouter()


def get_position_service() -> PositionService:
    return PositionService()


Claims = Annotated[dict[str, Any], Depends(get_current_claims)]
Service = Annotated[PositionService, Depends(get_position_service)]


@router.post(
    "/positions",
    response_model=PositionRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_ORG_WRITE))],
)
def create_position(payload: PositionCreate, claims: Claims, service: Service) -> PositionRead:
    try:
        position = service.create_position(payload, claims["sub"])
        return PositionRead.model_validate(position)
    except OrgStructureError as exc:
        handle_org_error(exc)
        raise


@router.get(
    "/positions",
    response_model=list[PositionRead],
    dependencies=[Depends(require_perm(PERM_ORG_READ))],
)
def list_positions(
    service: Service,
    department_id: str | None = None,
    is_active: bool | None = None,
) -> list[PositionRead]:
    try:
        positions = service.list_positions(department_id, is_active)
    except OrgStructureError as exc:
        handle_org_error(exc)
        raise
    return [PositionRead.model_validate(item) for item in positions]


@router.get(
    "/positions/search",
    response_model=Page[PositionRead],
    dependencies=[Depends(require_perm(PERM_ORG_READ))],
)
def search_positions(
    service: Service,
    q: str | None = None,
    department_id: str | None = None,
    is_active: bool | None = None,
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
) -> Page[PositionRead]:
    try:
        rows, pagination = service.search_positions(
            query=q,
            department_id=department_id,
            is_active=is_active,
            page=page,
            limit=limit,
        )
    except OrgStructureError as exc:
        handle_org_error(exc)
        raise
    return Page[PositionRead](
        data=[PositionRead.model_validate(item) for item in rows],
        pagination=pagination,
    )


@router.get(
    "/positions/stats",
    response_model=PositionStatsRead,
    dependencies=[Depends(require_perm(PERM_ORG_READ))],
)
def get_position_stats(service: Service) -> PositionStatsRead:
    return service.get_position_stats()


@router.get(
    "/positions/{position_id}",
    response_model=PositionRead,
    dependencies=[Depends(require_perm(PERM_ORG_READ))],
)
def get_position(position_id: str, service: Service) -> PositionRead:
    try:
        return PositionRead.model_validate(service.get_position(position_id))
    except OrgStructureError as exc:
        handle_org_error(exc)
        raise


@router.get(
    "/positions/{position_id}/subordinates",
    response_model=list[PositionRead],
    dependencies=[Depends(require_perm(PERM_ORG_READ))],
)
def list_subordinates(position_id: str, service: Service) -> list[PositionRead]:
    try:
        positions = service.list_subordinates(position_id)
    except OrgStructureError as exc:
        handle_org_error(exc)
        raise
    return [PositionRead.model_validate(item) for item in positions]


@router.get(
    "/positions/{position_id}/reporting-chain",
    response_model=list[PositionRead],
    dependencies=[Depends(require_perm(PERM_ORG_READ))],
)
def get_reporting_chain(position_id: str, service: Service) -> list[PositionRead]:
    try:
        positions = service.get_reporting_chain(position_id)
    except OrgStructureError as exc:
        handle_org_error(exc)
        raise
    return [PositionRead.model_validate(item) for item in positions]


@router.patch(
    "/positions/{position_id}",
    response_model=PositionRead,
    dependencies=[Depends(require_perm(PERM_ORG_WRITE))],
)
def update_position(
    position_id: str,
    payload: PositionUpdate,
    claims: Claims,
    service: Service,
) -> PositionRead:
    try:
        position = service.update_position(position_id, payload, claims["sub"])
        return PositionRead.model_validate(position)
    except OrgStructureError as exc:
        handle_org_error(exc)
        raise


@router.post(
    "/positions/{position_id}/deactivate",
    response_model=PositionRead,
    dependencies=[Depends(require_perm(PERM_ORG_WRITE))],
)
def deactivate_position(
    position_id: str,
    claims: Claims,
    service: Service,
    payload: Annotated[PositionDeactivateRequest | None, Body()] = None,
) -> PositionRead:
    reason = payload.reason if payload is not None else None
    try:
        position = service.deactivate_position(position_id, claims["sub"], reason)
        return PositionRead.model_validate(position)
    except OrgStructureError as exc:
        handle_org_error(exc)
        raise


@router.post(
    "/positions/{position_id}/reactivate",
    response_model=PositionRead,
    dependencies=[Depends(require_perm(PERM_ORG_WRITE))],
)
def reactivate_position(position_id: str, claims: Claims, service: Service) -> PositionRead:
    try:
        position = service.reactivate_position(position_id, claims["sub"])
        return PositionRead.model_validate(position)
    except OrgStructureError as exc:
        handle_org_error(exc)
        raise
