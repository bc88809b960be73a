"""Base data models shared across all doratrack components."""

from datetime import UTC, datetime
from enum import StrEnum
from urllib.parse import urlparse
from uuid import uuid4

from pydantic import BaseModel, Field


class IncidentState(StrEnum):
    """Lifecycle state of an incident."""

    ACTIVE = "ACTIVE"
    STABLE = "STABLE"
    RESOLVED = "RESOLVED"


class IncidentSeverity(StrEnum):
    """Incident severity, SEV1 being the most severe."""

    SEV1 = "SEV1"
    SEV2 = "SEV2"
    SEV3 = "SEV3"
    SEV4 = "SEV4"
    SEV5 = "SEV5"


class PeriodType(StrEnum):
    """Bucket granularity for period metrics."""

    WEEKLY = "WEEKLY"
    BIWEEKLY = "BIWEEKLY"
    MONTHLY = "MONTHLY"


class RepositoryConfig(BaseModel):
    """A monitored source repository and the keys that tie it to other systems."""

    id: str = Field(default_factory=lambda: f"repo-{uuid4().hex[:12]}")
    repository_url: str
    service_name: str | None = None
    deployment_workflow: str | None = None

    def _path_segments(self) -> list[str]:
        try:
            path = urlparse(self.repository_url).path
        except ValueError:
            return []
        return [seg for seg in path.split("/") if seg]

    @property
    def owner(self) -> str | None:
        segments = self._path_segments()
        if len(segments) < 2:
            return None
        return segments[0]

    @property
    def repo_name(self) -> str | None:
        segments = self._path_segments()
        if len(segments) < 2:
            return None
        return segments[1].removesuffix(".git") or None

    @property
    def full_name(self) -> str | None:
        if self.owner is None or self.repo_name is None:
            return None
        return f"{self.owner}/{self.repo_name}"


class Commit(BaseModel):
    """An immutable commit node. ``parent_shas`` keeps source order."""

    sha: str
    repository_id: str
    author: str = ""
    message: str = ""
    authored_at: datetime
    parent_shas: list[str] = Field(default_factory=list)

    @property
    def is_merge(self) -> bool:
        return len(self.parent_shas) >= 2


class Deployment(BaseModel):
    """A deployment of one commit to one environment."""

    id: str = Field(default_factory=lambda: f"dep-{uuid4().hex[:12]}")
    external_id: str = ""
    repository_id: str
    sha: str
    environment: str = "production"
    service_name: str | None = None
    created_at: datetime
    updated_at: datetime | None = None
    lead_time_processed: bool = False


class LeadTimeFact(BaseModel):
    """Elapsed time from a commit to the deployment that first shipped it."""

    commit_sha: str
    deployment: Deployment
    lead_time_seconds: int

    @property
    def lead_time_hours(self) -> float:
        return self.lead_time_seconds / 3600.0


class Incident(BaseModel):
    """An operational incident mirrored from the incident-management system."""

    id: str = Field(default_factory=lambda: f"inc-{uuid4().hex[:12]}")
    external_id: str
    repository_id: str | None = None
    title: str = ""
    state: IncidentState = IncidentState.ACTIVE
    severity: IncidentSeverity = IncidentSeverity.SEV5
    start_time: datetime
    resolved_time: datetime | None = None
    duration_seconds: int | None = None
    service_name: str | None = None


class PullRequest(BaseModel):
    id: str
    repository_id: str
    state: str = "open"
    first_commit_sha: str | None = None
    merged_at: datetime | None = None


class Developer(BaseModel):
    id: str
    github_username: str
    team_id: str | None = None


class Team(BaseModel):
    id: str
    name: str


def utcnow() -> datetime:
    """Timezone-aware current time."""
    return datetime.now(UTC)
