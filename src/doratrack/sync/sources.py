"""Upstream collaborator contracts.

The sync runners depend only on these protocols and the payload models they
return. The HTTP implementations live next door in :mod:`doratrack.sync.github`
and :mod:`doratrack.sync.datadog`; tests substitute in-memory fakes.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from pydantic import BaseModel, Field


class CommitPayload(BaseModel):
    sha: str
    author: str = ""
    message: str = ""
    authored_at: datetime
    parent_shas: list[str] = Field(default_factory=list)


class WorkflowRun(BaseModel):
    id: str
    head_sha: str = ""
    head_branch: str = ""
    conclusion: str | None = None
    created_at: datetime
    updated_at: datetime | None = None


class PullRequestPayload(BaseModel):
    id: str
    number: int
    state: str = "open"
    created_at: datetime
    updated_at: datetime | None = None
    merged_at: datetime | None = None
    first_commit_sha: str | None = None


class IncidentPayload(BaseModel):
    id: str
    title: str = ""
    state: str = ""
    severity: str = ""
    created_at: datetime
    resolved_at: datetime | None = None


class CommitSource(Protocol):
    async def fetch_commits(self, owner: str, repo: str, since: datetime) -> list[CommitPayload]: ...


class DeploymentSource(Protocol):
    async def fetch_workflow_runs(
        self, owner: str, repo: str, workflow: str, since: datetime
    ) -> list[WorkflowRun]: ...


class PullRequestSource(Protocol):
    async def fetch_pull_requests(
        self, owner: str, repo: str, since: datetime
    ) -> list[PullRequestPayload]: ...


class IncidentSource(Protocol):
    async def fetch_incidents(self, service_name: str, since: datetime) -> list[IncidentPayload]: ...
