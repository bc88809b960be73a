"""SQLAlchemy 2.x ORM models for doratrack persistence."""

from datetime import datetime
from uuid import uuid4

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class RepositoryRecord(Base):
    """Monitored source repository."""

    __tablename__ = "repositories"

    id: Mapped[str] = mapped_column(
        String(64), primary_key=True, default=lambda: f"repo-{uuid4().hex[:12]}"
    )
    repository_url: Mapped[str] = mapped_column(String(512), unique=True)
    service_name: Mapped[str | None] = mapped_column(String(256), nullable=True, index=True)
    deployment_workflow: Mapped[str | None] = mapped_column(String(256), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class CommitRecord(Base):
    """Immutable commit node. Unique per repository and sha."""

    __tablename__ = "commits"

    id: Mapped[str] = mapped_column(
        String(64), primary_key=True, default=lambda: f"cmt-{uuid4().hex[:12]}"
    )
    repository_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("repositories.id", ondelete="CASCADE")
    )
    sha: Mapped[str] = mapped_column(String(64))
    author: Mapped[str] = mapped_column(String(256), default="", index=True)
    message: Mapped[str] = mapped_column(Text, default="")
    authored_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    parents: Mapped[list["CommitParentRecord"]] = relationship(
        back_populates="commit",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="CommitParentRecord.position",
    )

    __table_args__ = (
        UniqueConstraint("repository_id", "sha", name="uq_commits_repository_sha"),
        Index("ix_commits_sha", "sha"),
    )


class CommitParentRecord(Base):
    """Child -> parent edge. The parent sha may not be synced yet."""

    __tablename__ = "commit_parents"

    commit_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("commits.id", ondelete="CASCADE"), primary_key=True
    )
    parent_sha: Mapped[str] = mapped_column(String(64), primary_key=True)
    position: Mapped[int] = mapped_column(default=0)

    commit: Mapped[CommitRecord] = relationship(back_populates="parents")


class DeploymentRecord(Base):
    """Deployment of a sha to an environment."""

    __tablename__ = "deployments"

    id: Mapped[str] = mapped_column(
        String(64), primary_key=True, default=lambda: f"dep-{uuid4().hex[:12]}"
    )
    external_id: Mapped[str] = mapped_column(String(128), unique=True)
    repository_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("repositories.id", ondelete="CASCADE")
    )
    sha: Mapped[str] = mapped_column(String(64))
    environment: Mapped[str] = mapped_column(String(64), default="production")
    service_name: Mapped[str | None] = mapped_column(String(256), nullable=True)
    lead_time_processed: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_deployments_repo_env_created", "repository_id", "environment", "created_at"),
        Index("ix_deployments_unprocessed", "environment", "lead_time_processed"),
    )


class LeadTimeRecord(Base):
    """Lead-time fact: one per (commit, deployment)."""

    __tablename__ = "change_lead_times"

    id: Mapped[str] = mapped_column(
        String(64), primary_key=True, default=lambda: f"clt-{uuid4().hex[:12]}"
    )
    repository_id: Mapped[str] = mapped_column(String(64), index=True)
    commit_sha: Mapped[str] = mapped_column(String(64), index=True)
    deployment_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("deployments.id", ondelete="CASCADE")
    )
    lead_time_seconds: Mapped[int] = mapped_column(BigInteger)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    deployment: Mapped[DeploymentRecord] = relationship(lazy="joined")

    __table_args__ = (
        UniqueConstraint("commit_sha", "deployment_id", name="uq_lead_times_commit_deployment"),
    )


class IncidentRecord(Base):
    """Incident mirrored from the incident-management system."""

    __tablename__ = "incidents"

    id: Mapped[str] = mapped_column(
        String(64), primary_key=True, default=lambda: f"inc-{uuid4().hex[:12]}"
    )
    external_id: Mapped[str] = mapped_column(String(128), unique=True)
    repository_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    title: Mapped[str] = mapped_column(String(512), default="")
    state: Mapped[str] = mapped_column(String(32), default="ACTIVE")
    severity: Mapped[str] = mapped_column(String(16), default="SEV5")
    service_name: Mapped[str | None] = mapped_column(String(256), nullable=True)
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    resolved_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    duration_seconds: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (Index("ix_incidents_service_start", "service_name", "start_time"),)


class PullRequestRecord(Base):
    __tablename__ = "pull_requests"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    repository_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("repositories.id", ondelete="CASCADE"), index=True
    )
    state: Mapped[str] = mapped_column(String(16), default="open")
    first_commit_sha: Mapped[str | None] = mapped_column(String(64), nullable=True)
    merged_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class TeamRecord(Base):
    __tablename__ = "teams"

    id: Mapped[str] = mapped_column(
        String(64), primary_key=True, default=lambda: f"team-{uuid4().hex[:12]}"
    )
    name: Mapped[str] = mapped_column(String(256), unique=True)


class DeveloperRecord(Base):
    __tablename__ = "developers"

    id: Mapped[str] = mapped_column(
        String(64), primary_key=True, default=lambda: f"dev-{uuid4().hex[:12]}"
    )
    github_username: Mapped[str] = mapped_column(String(256), unique=True)
    team_id: Mapped[str | None] = mapped_column(
        String(64), ForeignKey("teams.id", ondelete="SET NULL"), nullable=True, index=True
    )


class SyncWatermarkRecord(Base):
    """Last successful run per sync job."""

    __tablename__ = "sync_watermarks"

    job_name: Mapped[str] = mapped_column(String(256), primary_key=True)
    last_successful_run: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
