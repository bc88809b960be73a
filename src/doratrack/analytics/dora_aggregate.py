"""Commit-scoped DORA aggregate.

One aggregator serves every dashboard scope: callers supply a predicate that
selects the commits of interest (one author, a team, an organization) and
get back commit, pull request and DORA statistics for that commit set.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Callable, Iterable
from datetime import UTC, date, datetime, time
from typing import Protocol

import structlog
from pydantic import BaseModel, Field

from doratrack.analytics.dora_metrics import DORALevel, classify_change_failure_rate
from doratrack.changes.commit_graph import CommitGraph
from doratrack.incidents.correlator import IncidentCorrelator
from doratrack.models.base import (
    Commit,
    Deployment,
    Incident,
    IncidentState,
    LeadTimeFact,
    PullRequest,
    RepositoryConfig,
)

logger = structlog.get_logger()

CommitFilter = Callable[[Commit], bool]

MERGE_MESSAGE_PREFIXES = (
    "merge pull request",
    "merge branch",
    "merge remote-tracking branch",
)


# -- Results -------------------------------------------------------------------


class CommitStats(BaseModel):
    total_commits: int = 0
    repository_count: int = 0
    first_commit_at: datetime | None = None
    last_commit_at: datetime | None = None


class RepositoryStats(BaseModel):
    repository_id: str
    repository_name: str | None = None
    commit_count: int = 0


class PullRequestStats(BaseModel):
    total: int = 0
    merged: int = 0
    open: int = 0


class DailyMetric(BaseModel):
    day: date
    average_lead_time_hours: float | None = None
    deployment_count: int = 0
    commit_count: int = 0
    failed_deployment_count: int = 0
    average_mttr_hours: float | None = None
    resolved_incident_count: int = 0


class DoraSummary(BaseModel):
    """DORA figures for a commit set. ``None`` means no data, not zero."""

    average_lead_time_hours: float | None = None
    min_lead_time_hours: float | None = None
    max_lead_time_hours: float | None = None
    deployment_commit_count: int = 0
    deployment_count: int = 0
    failed_deployment_count: int = 0
    change_failure_rate: float | None = None
    change_failure_level: DORALevel | None = None
    average_mttr_hours: float | None = None
    min_mttr_hours: float | None = None
    max_mttr_hours: float | None = None
    resolved_incident_count: int = 0


class AggregateMetrics(BaseModel):
    commit_stats: CommitStats = Field(default_factory=CommitStats)
    repositories: list[RepositoryStats] = Field(default_factory=list)
    pull_requests: PullRequestStats = Field(default_factory=PullRequestStats)
    dora: DoraSummary = Field(default_factory=DoraSummary)
    daily: list[DailyMetric] = Field(default_factory=list)


# -- Store contract ------------------------------------------------------------


class AggregateStore(Protocol):
    async def list_commits(self, repository_ids: Iterable[str] | None = None) -> list[Commit]: ...

    async def list_lead_time_facts(
        self,
        commit_shas: Iterable[str],
        start_date: date | None = None,
        end_date: date | None = None,
        repository_ids: Iterable[str] | None = None,
    ) -> list[LeadTimeFact]: ...

    async def list_incidents(
        self,
        service_name: str | None = None,
        state: IncidentState | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        repository_ids: Iterable[str] | None = None,
    ) -> list[Incident]: ...

    async def list_pull_requests(
        self, repository_ids: Iterable[str] | None = None
    ) -> list[PullRequest]: ...

    async def list_repositories(self) -> list[RepositoryConfig]: ...


# -- Helpers -------------------------------------------------------------------


def is_merge_commit(commit: Commit) -> bool:
    if len(commit.parent_shas) >= 2:
        return True
    message = (commit.message or "").strip().lower()
    return message.startswith(MERGE_MESSAGE_PREFIXES)


def author_filter(usernames: Iterable[str]) -> CommitFilter:
    """Case-insensitive author match."""
    wanted = {u.lower() for u in usernames}
    return lambda commit: (commit.author or "").lower() in wanted


def _day_start(day: date | None) -> datetime | None:
    return datetime.combine(day, time.min, tzinfo=UTC) if day else None


def _day_end(day: date | None) -> datetime | None:
    return datetime.combine(day, time.max, tzinfo=UTC) if day else None


def _hours(seconds: Iterable[int]) -> list[float]:
    return [s / 3600.0 for s in seconds]


def _mean(values: list[float]) -> float | None:
    return sum(values) / len(values) if values else None


# -- Aggregator ----------------------------------------------------------------


class DoraAggregator:
    """Build :class:`AggregateMetrics` for any commit predicate."""

    def __init__(self, store: AggregateStore, correlator: IncidentCorrelator | None = None) -> None:
        self._store = store
        self._correlator = correlator or IncidentCorrelator()

    async def aggregate(
        self,
        commit_filter: CommitFilter,
        start_date: date | None = None,
        end_date: date | None = None,
        repository_ids: list[str] | None = None,
    ) -> AggregateMetrics:
        all_commits = await self._store.list_commits()
        commits = [c for c in all_commits if commit_filter(c) and not is_merge_commit(c)]

        if start_date or end_date or repository_ids:
            commits = await self._filter_by_deployments(
                commits, start_date, end_date, repository_ids
            )

        if not commits:
            return AggregateMetrics()

        shas = {c.sha for c in commits}
        facts = await self._store.list_lead_time_facts(shas, start_date, end_date, repository_ids)
        deployments = list({fact.deployment.id: fact.deployment for fact in facts}.values())
        failed_ids = await self._failed_deployments(deployments)
        resolved = await self._resolved_incidents(
            deployments, start_date, end_date, repository_ids
        )

        metrics = AggregateMetrics(
            commit_stats=self._commit_stats(commits),
            repositories=await self._repository_stats(commits),
            pull_requests=await self._pull_request_stats(all_commits, shas),
            dora=self._summary(facts, deployments, failed_ids, resolved),
            daily=self._daily_series(facts, failed_ids, resolved),
        )
        logger.debug(
            "dora_aggregate.computed",
            commits=len(commits),
            facts=len(facts),
            deployments=len(deployments),
            resolved_incidents=len(resolved),
        )
        return metrics

    async def _filter_by_deployments(
        self,
        commits: list[Commit],
        start_date: date | None,
        end_date: date | None,
        repository_ids: list[str] | None,
    ) -> list[Commit]:
        facts = await self._store.list_lead_time_facts(
            [c.sha for c in commits], start_date, end_date, repository_ids
        )
        deployed = {fact.commit_sha for fact in facts}
        return [c for c in commits if c.sha in deployed]

    async def _failed_deployments(self, deployments: list[Deployment]) -> set[str]:
        if not deployments:
            return set()
        earliest = min(d.created_at for d in deployments)
        latest = max(d.created_at for d in deployments)
        incidents = await self._store.list_incidents(
            start=earliest, end=latest + self._correlator.window
        )
        return self._correlator.failed_deployment_ids(deployments, incidents)

    async def _resolved_incidents(
        self,
        deployments: list[Deployment],
        start_date: date | None,
        end_date: date | None,
        repository_ids: list[str] | None,
    ) -> list[Incident]:
        repos = set(repository_ids) if repository_ids else {d.repository_id for d in deployments}
        if not repos:
            return []
        incidents = await self._store.list_incidents(
            state=IncidentState.RESOLVED,
            start=_day_start(start_date),
            end=_day_end(end_date),
            repository_ids=repos,
        )
        return [i for i in incidents if i.duration_seconds is not None]

    @staticmethod
    def _commit_stats(commits: list[Commit]) -> CommitStats:
        dates = [c.authored_at for c in commits]
        return CommitStats(
            total_commits=len(commits),
            repository_count=len({c.repository_id for c in commits}),
            first_commit_at=min(dates),
            last_commit_at=max(dates),
        )

    async def _repository_stats(self, commits: list[Commit]) -> list[RepositoryStats]:
        counts: dict[str, int] = defaultdict(int)
        for commit in commits:
            counts[commit.repository_id] += 1
        names = {r.id: r.full_name for r in await self._store.list_repositories()}
        stats = [
            RepositoryStats(repository_id=repo, repository_name=names.get(repo), commit_count=n)
            for repo, n in counts.items()
        ]
        stats.sort(key=lambda s: s.commit_count, reverse=True)
        return stats

    async def _pull_request_stats(
        self, all_commits: list[Commit], shas: set[str]
    ) -> PullRequestStats:
        repos = {c.repository_id for c in all_commits if c.sha in shas}
        pull_requests = await self._store.list_pull_requests(repos)
        graphs: dict[str, CommitGraph] = defaultdict(CommitGraph)
        for commit in all_commits:
            if commit.repository_id in repos:
                graphs[commit.repository_id].add(commit)

        stats = PullRequestStats()
        for pr in pull_requests:
            if not pr.first_commit_sha:
                continue
            reachable = graphs[pr.repository_id].descendants(pr.first_commit_sha)
            if reachable.isdisjoint(shas):
                continue
            stats.total += 1
            if pr.state == "closed" and pr.merged_at is not None:
                stats.merged += 1
            elif pr.state == "open":
                stats.open += 1
        return stats

    @staticmethod
    def _summary(
        facts: list[LeadTimeFact],
        deployments: list[Deployment],
        failed_ids: set[str],
        resolved: list[Incident],
    ) -> DoraSummary:
        lead_hours = _hours(f.lead_time_seconds for f in facts)
        mttr_hours = _hours(i.duration_seconds or 0 for i in resolved)
        cfr = len(failed_ids) * 100.0 / len(deployments) if deployments else None
        return DoraSummary(
            average_lead_time_hours=_mean(lead_hours),
            min_lead_time_hours=min(lead_hours) if lead_hours else None,
            max_lead_time_hours=max(lead_hours) if lead_hours else None,
            deployment_commit_count=len(facts),
            deployment_count=len(deployments),
            failed_deployment_count=len(failed_ids),
            change_failure_rate=cfr,
            change_failure_level=classify_change_failure_rate(cfr) if cfr is not None else None,
            average_mttr_hours=_mean(mttr_hours),
            min_mttr_hours=min(mttr_hours) if mttr_hours else None,
            max_mttr_hours=max(mttr_hours) if mttr_hours else None,
            resolved_incident_count=len(resolved),
        )

    @staticmethod
    def _daily_series(
        facts: list[LeadTimeFact], failed_ids: set[str], resolved: list[Incident]
    ) -> list[DailyMetric]:
        facts_by_day: dict[date, list[LeadTimeFact]] = defaultdict(list)
        for fact in facts:
            facts_by_day[fact.deployment.created_at.date()].append(fact)
        incidents_by_day: dict[date, list[Incident]] = defaultdict(list)
        for incident in resolved:
            incidents_by_day[incident.start_time.date()].append(incident)

        series: list[DailyMetric] = []
        for day in sorted(facts_by_day.keys() | incidents_by_day.keys()):
            day_facts = facts_by_day.get(day, [])
            day_incidents = incidents_by_day.get(day, [])
            deployment_ids = {f.deployment.id for f in day_facts}
            series.append(
                DailyMetric(
                    day=day,
                    average_lead_time_hours=_mean(_hours(f.lead_time_seconds for f in day_facts)),
                    deployment_count=len(deployment_ids),
                    commit_count=len(day_facts),
                    failed_deployment_count=len(deployment_ids & failed_ids),
                    average_mttr_hours=_mean(
                        _hours(i.duration_seconds or 0 for i in day_incidents)
                    ),
                    resolved_incident_count=len(day_incidents),
                )
            )
        return series
