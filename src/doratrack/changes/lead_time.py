"""Lead time for changes.

Projects attributed commits into lead-time facts and runs the idempotent
batch pass over deployments that have not been processed yet.
"""

from __future__ import annotations

import asyncio
import math
from collections.abc import Iterable
from datetime import datetime
from typing import Protocol

import structlog
from pydantic import BaseModel

from doratrack.changes.attribution import attribute_commits
from doratrack.changes.commit_graph import CommitGraph
from doratrack.models.base import Commit, Deployment, LeadTimeFact

logger = structlog.get_logger()


class LeadTimeStore(Protocol):
    """Persistence operations used by the lead-time pass."""

    async def list_unprocessed_deployments(self, environment: str) -> list[Deployment]: ...

    async def get_previous_deployment(
        self, repository_id: str, environment: str, before: datetime
    ) -> Deployment | None: ...

    async def load_commit_graph(self, repository_id: str) -> CommitGraph: ...

    async def get_attributed_shas(self, repository_id: str, shas: Iterable[str]) -> set[str]: ...

    async def save_attribution(self, deployment_id: str, facts: list[LeadTimeFact]) -> None: ...


class LeadTimePassResult(BaseModel):
    deployments_processed: int = 0
    facts_created: int = 0
    missing_commit: int = 0
    failed: int = 0


def lead_time_seconds(commit: Commit, deployment: Deployment) -> int:
    """Whole seconds from authoring to deployment, floored."""
    return math.floor((deployment.created_at - commit.authored_at).total_seconds())


def project_lead_times(deployment: Deployment, commits: Iterable[Commit]) -> list[LeadTimeFact]:
    """Build one fact per commit. Negative durations are kept and logged."""
    facts: list[LeadTimeFact] = []
    for commit in commits:
        seconds = lead_time_seconds(commit, deployment)
        if seconds < 0:
            logger.warning(
                "lead_time.negative",
                commit_sha=commit.sha,
                deployment_id=deployment.id,
                lead_time_seconds=seconds,
            )
        facts.append(
            LeadTimeFact(commit_sha=commit.sha, deployment=deployment, lead_time_seconds=seconds)
        )
    return facts


class LeadTimeCalculator:
    """Attribute commits to unprocessed deployments and persist lead-time facts.

    Deployments are processed oldest first so that each one's predecessor
    has already been attributed. Facts and the processed flag are written
    together per deployment, which makes re-running the pass a no-op.

    The scheduled pass and the one triggered by deployment sync share an
    instance; ``calculate`` holds a lock so passes never overlap.
    """

    def __init__(self, store: LeadTimeStore, environment: str = "production") -> None:
        self._store = store
        self._environment = environment
        self._lock = asyncio.Lock()

    async def calculate(self) -> LeadTimePassResult:
        if self._lock.locked():
            logger.debug("lead_time.pass_waiting", environment=self._environment)
        async with self._lock:
            return await self._calculate()

    async def _calculate(self) -> LeadTimePassResult:
        result = LeadTimePassResult()
        deployments = await self._store.list_unprocessed_deployments(self._environment)
        deployments.sort(key=lambda d: d.created_at)
        graphs: dict[str, CommitGraph] = {}

        for deployment in deployments:
            try:
                created, missing = await self._process(deployment, graphs)
            except Exception:
                result.failed += 1
                logger.exception("lead_time.deployment_failed", deployment_id=deployment.id)
                continue
            result.deployments_processed += 1
            result.facts_created += created
            result.missing_commit += int(missing)

        logger.info(
            "lead_time.pass_complete",
            environment=self._environment,
            deployments=result.deployments_processed,
            facts=result.facts_created,
            missing_commit=result.missing_commit,
            failed=result.failed,
        )
        return result

    async def _process(
        self, deployment: Deployment, graphs: dict[str, CommitGraph]
    ) -> tuple[int, bool]:
        graph = graphs.get(deployment.repository_id)
        if graph is None:
            graph = await self._store.load_commit_graph(deployment.repository_id)
            graphs[deployment.repository_id] = graph

        if deployment.sha not in graph:
            logger.warning(
                "lead_time.commit_missing",
                deployment_id=deployment.id,
                sha=deployment.sha,
            )
            await self._store.save_attribution(deployment.id, [])
            return 0, True

        previous = await self._store.get_previous_deployment(
            deployment.repository_id, deployment.environment, deployment.created_at
        )
        shas = attribute_commits(graph, deployment, previous)

        already = await self._store.get_attributed_shas(deployment.repository_id, shas)
        if already:
            logger.info(
                "lead_time.already_attributed",
                deployment_id=deployment.id,
                count=len(already),
            )
            shas = [sha for sha in shas if sha not in already]

        commits = [c for c in (graph.get(sha) for sha in shas) if c is not None]
        facts = project_lead_times(deployment, commits)
        await self._store.save_attribution(deployment.id, facts)
        logger.info(
            "lead_time.deployment_processed",
            deployment_id=deployment.id,
            previous_id=previous.id if previous else None,
            commits=len(facts),
        )
        return len(facts), False
