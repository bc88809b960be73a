"""Developer, team and organization dashboards over :class:`DoraAggregator`."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import date
from typing import Protocol

import structlog
from pydantic import BaseModel, Field

from doratrack.analytics.dora_aggregate import (
    AggregateMetrics,
    AggregateStore,
    DoraAggregator,
    author_filter,
)
from doratrack.api.exceptions import NotFoundError, ValidationError
from doratrack.models.base import Developer, Team

logger = structlog.get_logger()


class DirectoryStore(AggregateStore, Protocol):
    async def get_developer_by_username(self, username: str) -> Developer | None: ...

    async def get_team(self, team_id: str) -> Team | None: ...

    async def list_teams(self) -> list[Team]: ...

    async def list_developers(self, team_ids: Iterable[str] | None = None) -> list[Developer]: ...


class MemberBreakdown(BaseModel):
    developer_id: str
    github_username: str
    commit_count: int = 0
    deployment_count: int = 0
    average_lead_time_hours: float | None = None


class TeamBreakdown(BaseModel):
    team_id: str
    team_name: str
    member_count: int = 0
    commit_count: int = 0
    deployment_count: int = 0
    average_lead_time_hours: float | None = None
    change_failure_rate: float | None = None


class DeveloperDashboard(BaseModel):
    developer: Developer
    metrics: AggregateMetrics


class TeamDashboard(BaseModel):
    team: Team
    metrics: AggregateMetrics
    members: list[MemberBreakdown] = Field(default_factory=list)


class OrganizationDashboard(BaseModel):
    metrics: AggregateMetrics
    teams: list[TeamBreakdown] = Field(default_factory=list)


def _check_range(start_date: date | None, end_date: date | None) -> None:
    if start_date and end_date and start_date > end_date:
        raise ValidationError(f"start_date {start_date} is after end_date {end_date}")


class DashboardService:
    """Resolves a dashboard scope to a commit predicate and aggregates it."""

    def __init__(self, store: DirectoryStore, aggregator: DoraAggregator | None = None) -> None:
        self._store = store
        self._aggregator = aggregator or DoraAggregator(store)

    async def developer_metrics(
        self,
        username: str,
        start_date: date | None = None,
        end_date: date | None = None,
        repository_ids: list[str] | None = None,
    ) -> DeveloperDashboard:
        _check_range(start_date, end_date)
        developer = await self._store.get_developer_by_username(username)
        if developer is None:
            raise NotFoundError(f"Developer '{username}' not found")
        metrics = await self._aggregator.aggregate(
            author_filter([developer.github_username]), start_date, end_date, repository_ids
        )
        logger.info("dashboard.developer", username=username)
        return DeveloperDashboard(developer=developer, metrics=metrics)

    async def team_metrics(
        self,
        team_id: str,
        member_ids: list[str] | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
        repository_ids: list[str] | None = None,
    ) -> TeamDashboard:
        _check_range(start_date, end_date)
        team = await self._store.get_team(team_id)
        if team is None:
            raise NotFoundError(f"Team '{team_id}' not found")
        members = self._select_members(
            await self._store.list_developers([team_id]), member_ids
        )

        metrics = await self._aggregator.aggregate(
            author_filter(m.github_username for m in members), start_date, end_date, repository_ids
        )
        breakdown: list[MemberBreakdown] = []
        for member in members:
            member_metrics = await self._aggregator.aggregate(
                author_filter([member.github_username]), start_date, end_date, repository_ids
            )
            breakdown.append(
                MemberBreakdown(
                    developer_id=member.id,
                    github_username=member.github_username,
                    commit_count=member_metrics.commit_stats.total_commits,
                    deployment_count=member_metrics.dora.deployment_count,
                    average_lead_time_hours=member_metrics.dora.average_lead_time_hours,
                )
            )
        breakdown.sort(key=lambda m: m.commit_count, reverse=True)
        logger.info("dashboard.team", team_id=team_id, members=len(members))
        return TeamDashboard(team=team, metrics=metrics, members=breakdown)

    async def organization_metrics(
        self,
        team_ids: list[str] | None = None,
        member_ids: list[str] | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
        repository_ids: list[str] | None = None,
    ) -> OrganizationDashboard:
        _check_range(start_date, end_date)
        teams = await self._store.list_teams()
        if team_ids:
            known = {t.id for t in teams}
            unknown = [t for t in team_ids if t not in known]
            if unknown:
                raise NotFoundError(f"Teams not found: {', '.join(unknown)}")
            teams = [t for t in teams if t.id in set(team_ids)]

        members = self._select_members(
            await self._store.list_developers([t.id for t in teams]), member_ids
        )
        metrics = await self._aggregator.aggregate(
            author_filter(m.github_username for m in members), start_date, end_date, repository_ids
        )

        breakdown: list[TeamBreakdown] = []
        for team in teams:
            team_members = [m for m in members if m.team_id == team.id]
            team_metrics = await self._aggregator.aggregate(
                author_filter(m.github_username for m in team_members),
                start_date,
                end_date,
                repository_ids,
            )
            breakdown.append(
                TeamBreakdown(
                    team_id=team.id,
                    team_name=team.name,
                    member_count=len(team_members),
                    commit_count=team_metrics.commit_stats.total_commits,
                    deployment_count=team_metrics.dora.deployment_count,
                    average_lead_time_hours=team_metrics.dora.average_lead_time_hours,
                    change_failure_rate=team_metrics.dora.change_failure_rate,
                )
            )
        breakdown.sort(key=lambda t: t.commit_count, reverse=True)
        logger.info("dashboard.organization", teams=len(teams), members=len(members))
        return OrganizationDashboard(metrics=metrics, teams=breakdown)

    @staticmethod
    def _select_members(
        members: list[Developer], member_ids: list[str] | None
    ) -> list[Developer]:
        if not member_ids:
            return members
        allowed = {m.id for m in members}
        invalid = [m for m in member_ids if m not in allowed]
        if invalid:
            raise ValidationError(
                f"Members do not belong to the selected teams: {', '.join(invalid)}"
            )
        wanted = set(member_ids)
        return [m for m in members if m.id in wanted]
