"""Batch sync runners for commits, pull requests, deployments and incidents.

Every runner walks a set of units (a repository, a service), fetches new
records for each unit since that unit's watermark and persists them one by
one. A failed watermark read or fetch abandons the unit and leaves its
watermark alone so the next run retries the same window. A failed record
is logged and skipped; the watermark still advances once the unit's
records have been attempted.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from collections.abc import Iterable
from datetime import datetime, timedelta
from typing import Any, Protocol

import structlog
from pydantic import BaseModel

from doratrack.api.exceptions import DoraTrackError, ExternalServiceError, error_context
from doratrack.changes.lead_time import LeadTimeCalculator
from doratrack.models.base import (
    Commit,
    Deployment,
    Incident,
    IncidentSeverity,
    IncidentState,
    PullRequest,
    RepositoryConfig,
    utcnow,
)
from doratrack.sync.sources import (
    CommitPayload,
    CommitSource,
    DeploymentSource,
    IncidentPayload,
    IncidentSource,
    PullRequestPayload,
    PullRequestSource,
    WorkflowRun,
)
from doratrack.sync.watermark import Watermark, WatermarkStore

logger = structlog.get_logger()


class SyncStore(WatermarkStore, Protocol):
    async def list_repositories(self) -> list[RepositoryConfig]: ...

    async def upsert_commit(self, commit: Commit) -> bool: ...

    async def deployment_exists(self, external_id: str) -> bool: ...

    async def add_deployment(self, deployment: Deployment) -> None: ...

    async def upsert_incident(self, incident: Incident) -> bool: ...

    async def upsert_pull_request(self, pull_request: PullRequest) -> bool: ...


class SyncResult(BaseModel):
    job: str
    units: int = 0
    units_failed: int = 0
    records: int = 0
    records_failed: int = 0
    created: int = 0


# -- Normalisation -------------------------------------------------------------


def map_incident_state(raw: str | None) -> IncidentState:
    value = (raw or "").strip().lower()
    if value == "resolved":
        return IncidentState.RESOLVED
    if value == "stable":
        return IncidentState.STABLE
    return IncidentState.ACTIVE


def map_incident_severity(raw: str | None) -> IncidentSeverity:
    value = (raw or "").strip().upper().replace("-", "")
    if value in ("SEV1", "SEV2", "SEV3", "SEV4"):
        return IncidentSeverity(value)
    return IncidentSeverity.SEV5


def duration_seconds(start: datetime, end: datetime | None) -> int | None:
    if end is None:
        return None
    return math.floor((end - start).total_seconds())


# -- Base runner ---------------------------------------------------------------


class BatchSyncRunner(ABC):
    """Shared unit loop with watermark handling."""

    job_prefix: str = "sync"

    def __init__(self, store: SyncStore, lookback: timedelta) -> None:
        self._store = store
        self._lookback = lookback

    @abstractmethod
    async def _units(self) -> list[tuple[str, Any]]:
        """Return ``(key, unit)`` pairs; ``key`` names the watermark."""

    @abstractmethod
    async def _fetch(self, unit: Any, since: datetime) -> Iterable[Any]: ...

    @abstractmethod
    async def _persist(self, unit: Any, record: Any) -> bool:
        """Store one record. Returns ``True`` when a new row was created."""

    async def _after_run(self, result: SyncResult) -> None:
        return None

    async def run(self) -> SyncResult:
        result = SyncResult(job=self.job_prefix)
        for key, unit in await self._units():
            result.units += 1
            if not await self._run_unit(key, unit, result):
                result.units_failed += 1
        logger.info(
            f"{self.job_prefix}.run_complete",
            units=result.units,
            units_failed=result.units_failed,
            records=result.records,
            records_failed=result.records_failed,
            created=result.created,
        )
        await self._after_run(result)
        return result

    async def _run_unit(self, key: str, unit: Any, result: SyncResult) -> bool:
        watermark = Watermark(self._store, f"{self.job_prefix}:{key}", self._lookback)
        started = utcnow()
        try:
            with error_context(DoraTrackError, detail=f"watermark read failed for {key}"):
                since = await watermark.since(started)
            with error_context(ExternalServiceError, detail=f"fetch failed for {key}"):
                records = list(await self._fetch(unit, since))
        except DoraTrackError as exc:
            logger.exception(f"{self.job_prefix}.unit_failed", key=key, error=exc.detail)
            return False

        for record in records:
            result.records += 1
            try:
                if await self._persist(unit, record):
                    result.created += 1
            except Exception:
                result.records_failed += 1
                logger.exception(f"{self.job_prefix}.record_failed", key=key)
        await watermark.advance(started)
        logger.info(f"{self.job_prefix}.unit_complete", key=key, records=len(records))
        return True

    async def _repositories(self) -> list[tuple[str, RepositoryConfig]]:
        units: list[tuple[str, RepositoryConfig]] = []
        for repo in await self._store.list_repositories():
            if repo.full_name is None:
                logger.warning(
                    f"{self.job_prefix}.invalid_repository_url",
                    repository_id=repo.id,
                    url=repo.repository_url,
                )
                continue
            units.append((repo.full_name, repo))
        return units


# -- Commits -------------------------------------------------------------------


class CommitSyncRunner(BatchSyncRunner):
    job_prefix = "commit_sync"

    def __init__(
        self,
        store: SyncStore,
        source: CommitSource,
        lookback: timedelta = timedelta(days=365),
    ) -> None:
        super().__init__(store, lookback)
        self._source = source

    async def _units(self) -> list[tuple[str, Any]]:
        return await self._repositories()

    async def _fetch(self, unit: RepositoryConfig, since: datetime) -> list[CommitPayload]:
        return await self._source.fetch_commits(unit.owner or "", unit.repo_name or "", since)

    async def _persist(self, unit: RepositoryConfig, record: CommitPayload) -> bool:
        commit = Commit(
            sha=record.sha,
            repository_id=unit.id,
            author=record.author,
            message=record.message,
            authored_at=record.authored_at,
            parent_shas=record.parent_shas,
        )
        return await self._store.upsert_commit(commit)


# -- Pull requests -------------------------------------------------------------


class PullRequestSyncRunner(BatchSyncRunner):
    """Mirror pull requests per repository, keyed by the upstream id.

    Known pull requests are updated in place so that a later merge shows up
    in the dashboard counts.
    """

    job_prefix = "pull_request_sync"

    def __init__(
        self,
        store: SyncStore,
        source: PullRequestSource,
        lookback: timedelta = timedelta(days=365),
    ) -> None:
        super().__init__(store, lookback)
        self._source = source

    async def _units(self) -> list[tuple[str, Any]]:
        return await self._repositories()

    async def _fetch(self, unit: RepositoryConfig, since: datetime) -> list[PullRequestPayload]:
        return await self._source.fetch_pull_requests(unit.owner or "", unit.repo_name or "", since)

    async def _persist(self, unit: RepositoryConfig, record: PullRequestPayload) -> bool:
        pull_request = PullRequest(
            id=record.id,
            repository_id=unit.id,
            state=record.state,
            first_commit_sha=record.first_commit_sha,
            merged_at=record.merged_at,
        )
        return await self._store.upsert_pull_request(pull_request)


# -- Deployments ---------------------------------------------------------------


class DeploymentSyncRunner(BatchSyncRunner):
    """Mirror successful workflow runs as deployments.

    A run on the release branch deploys to the target environment; any other
    branch is recorded under its branch name. New deployments start
    unprocessed and trigger a lead-time pass once the run completes.
    """

    job_prefix = "deployment_sync"

    def __init__(
        self,
        store: SyncStore,
        source: DeploymentSource,
        lead_time: LeadTimeCalculator | None = None,
        lookback: timedelta = timedelta(days=30),
        target_environment: str = "production",
        release_branch: str = "main",
    ) -> None:
        super().__init__(store, lookback)
        self._source = source
        self._lead_time = lead_time
        self._target_environment = target_environment
        self._release_branch = release_branch

    async def _units(self) -> list[tuple[str, Any]]:
        units = []
        for key, repo in await self._repositories():
            if not repo.deployment_workflow:
                logger.debug("deployment_sync.no_workflow", repository_id=repo.id)
                continue
            units.append((key, repo))
        return units

    async def _fetch(self, unit: RepositoryConfig, since: datetime) -> list[WorkflowRun]:
        runs = await self._source.fetch_workflow_runs(
            unit.owner or "", unit.repo_name or "", unit.deployment_workflow or "", since
        )
        return [run for run in runs if run.conclusion == "success"]

    async def _persist(self, unit: RepositoryConfig, record: WorkflowRun) -> bool:
        if not record.head_sha.strip():
            logger.warning("deployment_sync.missing_head_sha", run_id=record.id)
            return False
        if await self._store.deployment_exists(record.id):
            return False
        environment = (
            self._target_environment
            if record.head_branch == self._release_branch
            else record.head_branch
        )
        await self._store.add_deployment(
            Deployment(
                external_id=record.id,
                repository_id=unit.id,
                sha=record.head_sha,
                environment=environment,
                service_name=unit.service_name,
                created_at=record.created_at,
                updated_at=record.updated_at,
                lead_time_processed=False,
            )
        )
        return True

    async def _after_run(self, result: SyncResult) -> None:
        if result.created and self._lead_time is not None:
            await self._lead_time.calculate()


# -- Incidents -----------------------------------------------------------------


class IncidentSyncRunner(BatchSyncRunner):
    job_prefix = "incident_sync"

    def __init__(
        self,
        store: SyncStore,
        source: IncidentSource,
        lookback: timedelta = timedelta(days=30),
    ) -> None:
        super().__init__(store, lookback)
        self._source = source

    async def _units(self) -> list[tuple[str, Any]]:
        services: dict[str, RepositoryConfig] = {}
        for repo in await self._store.list_repositories():
            if repo.service_name and repo.service_name not in services:
                services[repo.service_name] = repo
        return list(services.items())

    async def _fetch(self, unit: RepositoryConfig, since: datetime) -> list[IncidentPayload]:
        return await self._source.fetch_incidents(unit.service_name or "", since)

    async def _persist(self, unit: RepositoryConfig, record: IncidentPayload) -> bool:
        incident = Incident(
            external_id=record.id,
            repository_id=unit.id,
            title=record.title,
            state=map_incident_state(record.state),
            severity=map_incident_severity(record.severity),
            start_time=record.created_at,
            resolved_time=record.resolved_at,
            duration_seconds=duration_seconds(record.created_at, record.resolved_at),
            service_name=unit.service_name,
        )
        return await self._store.upsert_incident(incident)
