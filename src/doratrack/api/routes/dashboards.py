"""Developer, team and organization dashboard endpoints."""

from datetime import date

from fastapi import APIRouter, Query

from doratrack.analytics.dashboards import (
    DashboardService,
    DeveloperDashboard,
    OrganizationDashboard,
    TeamDashboard,
)
from doratrack.api.exceptions import ServiceUnavailableError

router = APIRouter(prefix="/dashboards")

_service: DashboardService | None = None


def set_service(service: DashboardService | None) -> None:
    global _service
    _service = service


def _get_service() -> DashboardService:
    if _service is None:
        raise ServiceUnavailableError("Dashboard service not initialized")
    return _service


@router.get("/developers/{username}")
async def developer_dashboard(
    username: str,
    start_date: date | None = None,
    end_date: date | None = None,
    repository_ids: list[str] | None = Query(default=None),
) -> DeveloperDashboard:
    return await _get_service().developer_metrics(username, start_date, end_date, repository_ids)


@router.get("/teams/{team_id}")
async def team_dashboard(
    team_id: str,
    member_ids: list[str] | None = Query(default=None),
    start_date: date | None = None,
    end_date: date | None = None,
    repository_ids: list[str] | None = Query(default=None),
) -> TeamDashboard:
    return await _get_service().team_metrics(
        team_id, member_ids, start_date, end_date, repository_ids
    )


@router.get("/organization")
async def organization_dashboard(
    team_ids: list[str] | None = Query(default=None),
    member_ids: list[str] | None = Query(default=None),
    start_date: date | None = None,
    end_date: date | None = None,
    repository_ids: list[str] | None = Query(default=None),
) -> OrganizationDashboard:
    return await _get_service().organization_metrics(
        team_ids, member_ids, start_date, end_date, repository_ids
    )
