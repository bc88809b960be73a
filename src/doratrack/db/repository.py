"""Repository layer bridging Pydantic domain models and SQLAlchemy ORM."""

from collections.abc import Iterable
from datetime import UTC, date, datetime, time

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from doratrack.changes.commit_graph import CommitGraph
from doratrack.db.models import (
    CommitParentRecord,
    CommitRecord,
    DeploymentRecord,
    DeveloperRecord,
    IncidentRecord,
    LeadTimeRecord,
    PullRequestRecord,
    RepositoryRecord,
    SyncWatermarkRecord,
    TeamRecord,
)
from doratrack.models.base import (
    Commit,
    Deployment,
    Developer,
    Incident,
    IncidentSeverity,
    IncidentState,
    LeadTimeFact,
    PullRequest,
    RepositoryConfig,
    Team,
)

logger = structlog.get_logger()


class Repository:
    """Unified persistence repository for all doratrack domain objects.

    Implements the store contracts used by the lead-time pass, the period
    metrics engine, the dashboard aggregator and the sync runners.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._sf = session_factory

    # ── Repositories ────────────────────────────────────────────────

    async def list_repositories(self) -> list[RepositoryConfig]:
        async with self._sf() as session:
            result = await session.execute(select(RepositoryRecord).order_by(RepositoryRecord.id))
            return [self._repository_from_record(r) for r in result.scalars()]

    async def add_repository(self, config: RepositoryConfig) -> RepositoryConfig:
        async with self._sf() as session:
            record = RepositoryRecord(
                id=config.id,
                repository_url=config.repository_url,
                service_name=config.service_name,
                deployment_workflow=config.deployment_workflow,
            )
            session.add(record)
            await session.commit()
            logger.info("repository_added", repository_id=record.id, url=record.repository_url)
            return self._repository_from_record(record)

    @staticmethod
    def _repository_from_record(record: RepositoryRecord) -> RepositoryConfig:
        return RepositoryConfig(
            id=record.id,
            repository_url=record.repository_url,
            service_name=record.service_name,
            deployment_workflow=record.deployment_workflow,
        )

    # ── Commits ─────────────────────────────────────────────────────

    async def upsert_commit(self, commit: Commit) -> bool:
        """Insert ``commit`` and its parent edges. Existing commits are left untouched."""
        async with self._sf() as session:
            stmt = select(CommitRecord.id).where(
                CommitRecord.repository_id == commit.repository_id,
                CommitRecord.sha == commit.sha,
            )
            if (await session.execute(stmt)).scalar_one_or_none() is not None:
                return False
            record = CommitRecord(
                repository_id=commit.repository_id,
                sha=commit.sha,
                author=commit.author,
                message=commit.message,
                authored_at=commit.authored_at,
            )
            record.parents = [
                CommitParentRecord(parent_sha=parent, position=i)
                for i, parent in enumerate(dict.fromkeys(commit.parent_shas))
            ]
            session.add(record)
            await session.commit()
            return True

    async def list_commits(self, repository_ids: Iterable[str] | None = None) -> list[Commit]:
        async with self._sf() as session:
            stmt = select(CommitRecord)
            if repository_ids is not None:
                stmt = stmt.where(CommitRecord.repository_id.in_(list(repository_ids)))
            result = await session.execute(stmt)
            return [self._commit_from_record(r) for r in result.scalars()]

    async def load_commit_graph(self, repository_id: str) -> CommitGraph:
        commits = await self.list_commits([repository_id])
        logger.debug("commit_graph_loaded", repository_id=repository_id, commits=len(commits))
        return CommitGraph(commits)

    @staticmethod
    def _commit_from_record(record: CommitRecord) -> Commit:
        return Commit(
            sha=record.sha,
            repository_id=record.repository_id,
            author=record.author,
            message=record.message,
            authored_at=record.authored_at,
            parent_shas=[p.parent_sha for p in record.parents],
        )

    # ── Deployments ─────────────────────────────────────────────────

    async def deployment_exists(self, external_id: str) -> bool:
        async with self._sf() as session:
            stmt = select(DeploymentRecord.id).where(DeploymentRecord.external_id == external_id)
            return (await session.execute(stmt)).scalar_one_or_none() is not None

    async def add_deployment(self, deployment: Deployment) -> None:
        async with self._sf() as session:
            session.add(
                DeploymentRecord(
                    id=deployment.id,
                    external_id=deployment.external_id,
                    repository_id=deployment.repository_id,
                    sha=deployment.sha,
                    environment=deployment.environment,
                    service_name=deployment.service_name,
                    lead_time_processed=False,
                    created_at=deployment.created_at,
                    updated_at=deployment.updated_at,
                )
            )
            await session.commit()

    async def list_unprocessed_deployments(self, environment: str) -> list[Deployment]:
        async with self._sf() as session:
            stmt = (
                select(DeploymentRecord)
                .where(
                    DeploymentRecord.environment == environment,
                    DeploymentRecord.lead_time_processed.is_(False),
                )
                .order_by(DeploymentRecord.created_at)
            )
            result = await session.execute(stmt)
            return [self._deployment_from_record(r) for r in result.scalars()]

    async def get_previous_deployment(
        self, repository_id: str, environment: str, before: datetime
    ) -> Deployment | None:
        async with self._sf() as session:
            stmt = (
                select(DeploymentRecord)
                .where(
                    DeploymentRecord.repository_id == repository_id,
                    DeploymentRecord.environment == environment,
                    DeploymentRecord.created_at < before,
                )
                .order_by(DeploymentRecord.created_at.desc())
                .limit(1)
            )
            record = (await session.execute(stmt)).scalar_one_or_none()
            return self._deployment_from_record(record) if record else None

    async def count_deployments(self, environment: str, start: datetime, end: datetime) -> int:
        async with self._sf() as session:
            stmt = select(func.count(DeploymentRecord.id)).where(
                DeploymentRecord.environment == environment,
                DeploymentRecord.created_at >= start,
                DeploymentRecord.created_at <= end,
            )
            return int((await session.execute(stmt)).scalar_one())

    @staticmethod
    def _deployment_from_record(record: DeploymentRecord) -> Deployment:
        return Deployment(
            id=record.id,
            external_id=record.external_id,
            repository_id=record.repository_id,
            sha=record.sha,
            environment=record.environment,
            service_name=record.service_name,
            created_at=record.created_at,
            updated_at=record.updated_at,
            lead_time_processed=record.lead_time_processed,
        )

    # ── Lead times ──────────────────────────────────────────────────

    async def get_attributed_shas(self, repository_id: str, shas: Iterable[str]) -> set[str]:
        wanted = list(shas)
        if not wanted:
            return set()
        async with self._sf() as session:
            stmt = select(LeadTimeRecord.commit_sha).where(
                LeadTimeRecord.repository_id == repository_id,
                LeadTimeRecord.commit_sha.in_(wanted),
            )
            return set((await session.execute(stmt)).scalars())

    async def save_attribution(self, deployment_id: str, facts: list[LeadTimeFact]) -> None:
        """Write facts and flip the processed flag in one transaction."""
        async with self._sf() as session:
            session.add_all(
                LeadTimeRecord(
                    repository_id=fact.deployment.repository_id,
                    commit_sha=fact.commit_sha,
                    deployment_id=deployment_id,
                    lead_time_seconds=fact.lead_time_seconds,
                )
                for fact in facts
            )
            await session.execute(
                update(DeploymentRecord)
                .where(DeploymentRecord.id == deployment_id)
                .values(lead_time_processed=True)
            )
            await session.commit()

    async def list_lead_time_facts(
        self,
        commit_shas: Iterable[str],
        start_date: date | None = None,
        end_date: date | None = None,
        repository_ids: Iterable[str] | None = None,
    ) -> list[LeadTimeFact]:
        shas = list(commit_shas)
        if not shas:
            return []
        async with self._sf() as session:
            stmt = (
                select(LeadTimeRecord)
                .join(DeploymentRecord, LeadTimeRecord.deployment_id == DeploymentRecord.id)
                .where(LeadTimeRecord.commit_sha.in_(shas))
            )
            if start_date is not None:
                start = datetime.combine(start_date, time.min, tzinfo=UTC)
                stmt = stmt.where(DeploymentRecord.created_at >= start)
            if end_date is not None:
                end = datetime.combine(end_date, time.max, tzinfo=UTC)
                stmt = stmt.where(DeploymentRecord.created_at <= end)
            if repository_ids:
                stmt = stmt.where(DeploymentRecord.repository_id.in_(list(repository_ids)))
            result = await session.execute(stmt)
            return [
                LeadTimeFact(
                    commit_sha=r.commit_sha,
                    deployment=self._deployment_from_record(r.deployment),
                    lead_time_seconds=r.lead_time_seconds,
                )
                for r in result.scalars()
            ]

    # ── Incidents ───────────────────────────────────────────────────

    async def upsert_incident(self, incident: Incident) -> bool:
        """Insert or update by external id. Returns ``True`` on insert."""
        async with self._sf() as session:
            stmt = select(IncidentRecord).where(IncidentRecord.external_id == incident.external_id)
            record = (await session.execute(stmt)).scalar_one_or_none()
            created = record is None
            if record is None:
                record = IncidentRecord(
                    id=incident.id,
                    external_id=incident.external_id,
                    start_time=incident.start_time,
                )
                session.add(record)
            record.repository_id = incident.repository_id
            record.title = incident.title
            record.state = incident.state.value
            record.severity = incident.severity.value
            record.service_name = incident.service_name
            record.resolved_time = incident.resolved_time
            record.duration_seconds = incident.duration_seconds
            await session.commit()
            return created

    async def list_incidents(
        self,
        service_name: str | None = None,
        state: IncidentState | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        repository_ids: Iterable[str] | None = None,
    ) -> list[Incident]:
        async with self._sf() as session:
            stmt = select(IncidentRecord)
            if service_name is not None:
                stmt = stmt.where(IncidentRecord.service_name == service_name)
            if state is not None:
                stmt = stmt.where(IncidentRecord.state == state.value)
            if start is not None:
                stmt = stmt.where(IncidentRecord.start_time >= start)
            if end is not None:
                stmt = stmt.where(IncidentRecord.start_time <= end)
            if repository_ids is not None:
                stmt = stmt.where(IncidentRecord.repository_id.in_(list(repository_ids)))
            result = await session.execute(stmt.order_by(IncidentRecord.start_time))
            return [self._incident_from_record(r) for r in result.scalars()]

    async def count_incidents(self, service_name: str, start: datetime, end: datetime) -> int:
        async with self._sf() as session:
            stmt = select(func.count(IncidentRecord.id)).where(
                IncidentRecord.service_name == service_name,
                IncidentRecord.start_time >= start,
                IncidentRecord.start_time <= end,
            )
            return int((await session.execute(stmt)).scalar_one())

    @staticmethod
    def _incident_from_record(record: IncidentRecord) -> Incident:
        return Incident(
            id=record.id,
            external_id=record.external_id,
            repository_id=record.repository_id,
            title=record.title,
            state=IncidentState(record.state),
            severity=IncidentSeverity(record.severity),
            start_time=record.start_time,
            resolved_time=record.resolved_time,
            duration_seconds=record.duration_seconds,
            service_name=record.service_name,
        )

    # ── Pull requests ───────────────────────────────────────────────

    async def upsert_pull_request(self, pull_request: PullRequest) -> bool:
        """Insert or refresh state and merge time. Returns ``True`` on insert."""
        async with self._sf() as session:
            record = await session.get(PullRequestRecord, pull_request.id)
            created = record is None
            if record is None:
                record = PullRequestRecord(
                    id=pull_request.id, repository_id=pull_request.repository_id
                )
                session.add(record)
            record.state = pull_request.state
            record.merged_at = pull_request.merged_at
            if pull_request.first_commit_sha:
                record.first_commit_sha = pull_request.first_commit_sha
            await session.commit()
            return created

    async def list_pull_requests(
        self, repository_ids: Iterable[str] | None = None
    ) -> list[PullRequest]:
        async with self._sf() as session:
            stmt = select(PullRequestRecord)
            if repository_ids is not None:
                stmt = stmt.where(PullRequestRecord.repository_id.in_(list(repository_ids)))
            result = await session.execute(stmt)
            return [
                PullRequest(
                    id=r.id,
                    repository_id=r.repository_id,
                    state=r.state,
                    first_commit_sha=r.first_commit_sha,
                    merged_at=r.merged_at,
                )
                for r in result.scalars()
            ]

    # ── Developers & teams ──────────────────────────────────────────

    async def get_developer_by_username(self, username: str) -> Developer | None:
        async with self._sf() as session:
            stmt = select(DeveloperRecord).where(
                func.lower(DeveloperRecord.github_username) == username.lower()
            )
            record = (await session.execute(stmt)).scalar_one_or_none()
            return self._developer_from_record(record) if record else None

    async def list_developers(self, team_ids: Iterable[str] | None = None) -> list[Developer]:
        async with self._sf() as session:
            stmt = select(DeveloperRecord).order_by(DeveloperRecord.github_username)
            if team_ids is not None:
                stmt = stmt.where(DeveloperRecord.team_id.in_(list(team_ids)))
            result = await session.execute(stmt)
            return [self._developer_from_record(r) for r in result.scalars()]

    async def get_team(self, team_id: str) -> Team | None:
        async with self._sf() as session:
            record = await session.get(TeamRecord, team_id)
            return Team(id=record.id, name=record.name) if record else None

    async def list_teams(self) -> list[Team]:
        async with self._sf() as session:
            result = await session.execute(select(TeamRecord).order_by(TeamRecord.name))
            return [Team(id=r.id, name=r.name) for r in result.scalars()]

    @staticmethod
    def _developer_from_record(record: DeveloperRecord) -> Developer:
        return Developer(id=record.id, github_username=record.github_username, team_id=record.team_id)

    # ── Watermarks ──────────────────────────────────────────────────

    async def get_watermark(self, job_name: str) -> datetime | None:
        async with self._sf() as session:
            record = await session.get(SyncWatermarkRecord, job_name)
            return record.last_successful_run if record else None

    async def set_watermark(self, job_name: str, timestamp: datetime) -> None:
        async with self._sf() as session:
            record = await session.get(SyncWatermarkRecord, job_name)
            if record is None:
                session.add(SyncWatermarkRecord(job_name=job_name, last_successful_run=timestamp))
            else:
                record.last_successful_run = timestamp
            await session.commit()
