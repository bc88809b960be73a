"""In-memory store implementing the repository contracts for unit tests."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import UTC, date, datetime, time

from doratrack.changes.commit_graph import CommitGraph
from doratrack.models.base import (
    Commit,
    Deployment,
    Developer,
    Incident,
    IncidentState,
    LeadTimeFact,
    PullRequest,
    RepositoryConfig,
    Team,
)


def ts(day: str, hour: int = 0, minute: int = 0) -> datetime:
    """UTC timestamp from an ISO date plus hour/minute."""
    return datetime.fromisoformat(day).replace(hour=hour, minute=minute, tzinfo=UTC)


class InMemoryStore:
    def __init__(self) -> None:
        self.repositories: list[RepositoryConfig] = []
        self.commits: dict[tuple[str, str], Commit] = {}
        self.deployments: dict[str, Deployment] = {}
        self.facts: list[LeadTimeFact] = []
        self.incidents: dict[str, Incident] = {}
        self.pull_requests: list[PullRequest] = []
        self.developers: list[Developer] = []
        self.teams: list[Team] = []
        self.watermarks: dict[str, datetime] = {}
        self.graph_loads = 0

    # -- seeding -----------------------------------------------------------------

    def add_commits(self, *commits: Commit) -> None:
        for commit in commits:
            self.commits[(commit.repository_id, commit.sha)] = commit

    def add_deployments(self, *deployments: Deployment) -> None:
        for deployment in deployments:
            self.deployments[deployment.id] = deployment

    def add_incidents(self, *incidents: Incident) -> None:
        for incident in incidents:
            self.incidents[incident.external_id] = incident

    def facts_for(self, deployment_id: str) -> list[LeadTimeFact]:
        return [f for f in self.facts if f.deployment.id == deployment_id]

    # -- repositories -------------------------------------------------------------

    async def list_repositories(self) -> list[RepositoryConfig]:
        return list(self.repositories)

    # -- commits ------------------------------------------------------------------

    async def upsert_commit(self, commit: Commit) -> bool:
        key = (commit.repository_id, commit.sha)
        if key in self.commits:
            return False
        self.commits[key] = commit
        return True

    async def list_commits(self, repository_ids: Iterable[str] | None = None) -> list[Commit]:
        repos = set(repository_ids) if repository_ids is not None else None
        return [c for c in self.commits.values() if repos is None or c.repository_id in repos]

    async def load_commit_graph(self, repository_id: str) -> CommitGraph:
        self.graph_loads += 1
        return CommitGraph(await self.list_commits([repository_id]))

    # -- deployments ----------------------------------------------------------------

    async def deployment_exists(self, external_id: str) -> bool:
        return any(d.external_id == external_id for d in self.deployments.values())

    async def add_deployment(self, deployment: Deployment) -> None:
        self.deployments[deployment.id] = deployment

    async def list_unprocessed_deployments(self, environment: str) -> list[Deployment]:
        return sorted(
            (
                d
                for d in self.deployments.values()
                if d.environment == environment and not d.lead_time_processed
            ),
            key=lambda d: d.created_at,
        )

    async def get_previous_deployment(
        self, repository_id: str, environment: str, before: datetime
    ) -> Deployment | None:
        earlier = [
            d
            for d in self.deployments.values()
            if d.repository_id == repository_id
            and d.environment == environment
            and d.created_at < before
        ]
        return max(earlier, key=lambda d: d.created_at) if earlier else None

    async def count_deployments(self, environment: str, start: datetime, end: datetime) -> int:
        return sum(
            1
            for d in self.deployments.values()
            if d.environment == environment and start <= d.created_at <= end
        )

    # -- lead times -------------------------------------------------------------------

    async def get_attributed_shas(self, repository_id: str, shas: Iterable[str]) -> set[str]:
        wanted = set(shas)
        return {
            f.commit_sha
            for f in self.facts
            if f.deployment.repository_id == repository_id and f.commit_sha in wanted
        }

    async def save_attribution(self, deployment_id: str, facts: list[LeadTimeFact]) -> None:
        self.facts.extend(facts)
        deployment = self.deployments[deployment_id]
        self.deployments[deployment_id] = deployment.model_copy(
            update={"lead_time_processed": True}
        )

    async def list_lead_time_facts(
        self,
        commit_shas: Iterable[str],
        start_date: date | None = None,
        end_date: date | None = None,
        repository_ids: Iterable[str] | None = None,
    ) -> list[LeadTimeFact]:
        shas = set(commit_shas)
        repos = set(repository_ids) if repository_ids else None
        start = datetime.combine(start_date, time.min, tzinfo=UTC) if start_date else None
        end = datetime.combine(end_date, time.max, tzinfo=UTC) if end_date else None
        return [
            f
            for f in self.facts
            if f.commit_sha in shas
            and (start is None or f.deployment.created_at >= start)
            and (end is None or f.deployment.created_at <= end)
            and (repos is None or f.deployment.repository_id in repos)
        ]

    # -- incidents ----------------------------------------------------------------------

    async def upsert_incident(self, incident: Incident) -> bool:
        created = incident.external_id not in self.incidents
        self.incidents[incident.external_id] = incident
        return created

    async def list_incidents(
        self,
        service_name: str | None = None,
        state: IncidentState | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        repository_ids: Iterable[str] | None = None,
    ) -> list[Incident]:
        repos = set(repository_ids) if repository_ids is not None else None
        return [
            i
            for i in self.incidents.values()
            if (service_name is None or i.service_name == service_name)
            and (state is None or i.state == state)
            and (start is None or i.start_time >= start)
            and (end is None or i.start_time <= end)
            and (repos is None or i.repository_id in repos)
        ]

    async def count_incidents(self, service_name: str, start: datetime, end: datetime) -> int:
        return len(await self.list_incidents(service_name=service_name, start=start, end=end))

    # -- pull requests, people ----------------------------------------------------------------

    async def upsert_pull_request(self, pull_request: PullRequest) -> bool:
        for i, existing in enumerate(self.pull_requests):
            if existing.id == pull_request.id:
                self.pull_requests[i] = pull_request
                return False
        self.pull_requests.append(pull_request)
        return True

    async def list_pull_requests(
        self, repository_ids: Iterable[str] | None = None
    ) -> list[PullRequest]:
        repos = set(repository_ids) if repository_ids is not None else None
        return [p for p in self.pull_requests if repos is None or p.repository_id in repos]

    async def get_developer_by_username(self, username: str) -> Developer | None:
        for developer in self.developers:
            if developer.github_username.lower() == username.lower():
                return developer
        return None

    async def list_developers(self, team_ids: Iterable[str] | None = None) -> list[Developer]:
        teams = set(team_ids) if team_ids is not None else None
        return [d for d in self.developers if teams is None or d.team_id in teams]

    async def get_team(self, team_id: str) -> Team | None:
        return next((t for t in self.teams if t.id == team_id), None)

    async def list_teams(self) -> list[Team]:
        return list(self.teams)

    # -- watermarks ------------------------------------------------------------------------

    async def get_watermark(self, job_name: str) -> datetime | None:
        return self.watermarks.get(job_name)

    async def set_watermark(self, job_name: str, timestamp: datetime) -> None:
        self.watermarks[job_name] = timestamp
