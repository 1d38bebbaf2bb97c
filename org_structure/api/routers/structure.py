from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query

from org_structure.api.deps import require_perm
from org_structure.domain.models import (
    ChangeLogRead,
    DepartmentRead,
    OrganizationChartRead,
    Page,
    PositionRead,
)
from org_structure.domain.permissions import PERM_ORG_READ
from org_structure.services.change_log_service import ChangeLogService
from org_structure.services.position_service import PositionService

router = APIRouter()


def get_position_service() -> PositionService:
    return PositionService()


def get_change_log_service() -> ChangeLogService:
    return ChangeLogService()


Positions = Annotated[PositionService, Depends(get_position_service)]
ChangeLogs = Annotated[ChangeLogService, Depends(get_change_log_service)]


@router.get(
    "/org-chart",
    response_model=OrganizationChartRead,
    dependencies=[Depends(require_perm(PERM_ORG_READ))],
)
def get_organization_chart(service: Positions) -> OrganizationChartRead:
    departments, positions = service.get_organization_chart()
    return OrganizationChartRead(
        departments=[DepartmentRead.model_validate(item) for item in departments],
        positions=[PositionRead.model_validate(item) for item in positions],
    )


@router.get(
    "/change-logs/{entity_type}/{entity_id}",
    response_model=Page[ChangeLogRead],
    dependencies=[Depends(require_perm(PERM_ORG_READ))],
)
def list_entity_changes(
    entity_type: str,
    entity_id: str,
    service: ChangeLogs,
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
) -> Page[ChangeLogRead]:
    rows, pagination = service.list_entity_changes(entity_type, entity_id, page=page, limit=limit)
    return Page[ChangeLogRead](
        data=[ChangeLogRead.model_validate(item) for item in rows],
        pagination=pagination,
    )
