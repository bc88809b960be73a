"""Initial schema: repositories, commit graph, deployments, lead times, incidents.

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "repositories",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("repository_url", sa.String(512), nullable=False, unique=True),
        sa.Column("service_name", sa.String(256), nullable=True, index=True),
        sa.Column("deployment_workflow", sa.String(256), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "commits",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column(
            "repository_id",
            sa.String(64),
            sa.ForeignKey("repositories.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("sha", sa.String(64), nullable=False),
        sa.Column("author", sa.String(256), server_default="", index=True),
        sa.Column("message", sa.Text, server_default=""),
        sa.Column("authored_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("repository_id", "sha", name="uq_commits_repository_sha"),
    )
    op.create_index("ix_commits_sha", "commits", ["sha"])

    op.create_table(
        "commit_parents",
        sa.Column(
            "commit_id",
            sa.String(64),
            sa.ForeignKey("commits.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("parent_sha", sa.String(64), primary_key=True),
        sa.Column("position", sa.Integer, server_default="0"),
    )

    op.create_table(
        "deployments",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("external_id", sa.String(128), nullable=False, unique=True),
        sa.Column(
            "repository_id",
            sa.String(64),
            sa.ForeignKey("repositories.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("sha", sa.String(64), nullable=False),
        sa.Column("environment", sa.String(64), server_default="production"),
        sa.Column("service_name", sa.String(256), nullable=True),
        sa.Column("lead_time_processed", sa.Boolean, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "ix_deployments_repo_env_created",
        "deployments",
        ["repository_id", "environment", "created_at"],
    )
    op.create_index(
        "ix_deployments_unprocessed", "deployments", ["environment", "lead_time_processed"]
    )

    op.create_table(
        "change_lead_times",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("repository_id", sa.String(64), nullable=False, index=True),
        sa.Column("commit_sha", sa.String(64), nullable=False, index=True),
        sa.Column(
            "deployment_id",
            sa.String(64),
            sa.ForeignKey("deployments.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("lead_time_seconds", sa.BigInteger, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint(
            "commit_sha", "deployment_id", name="uq_lead_times_commit_deployment"
        ),
    )

    op.create_table(
        "incidents",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("external_id", sa.String(128), nullable=False, unique=True),
        sa.Column("repository_id", sa.String(64), nullable=True, index=True),
        sa.Column("title", sa.String(512), server_default=""),
        sa.Column("state", sa.String(32), server_default="ACTIVE"),
        sa.Column("severity", sa.String(16), server_default="SEV5"),
        sa.Column("service_name", sa.String(256), nullable=True),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("resolved_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration_seconds", sa.BigInteger, nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(
        "ix_incidents_service_start", "incidents", ["service_name", "start_time"]
    )

    op.create_table(
        "pull_requests",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column(
            "repository_id",
            sa.String(64),
            sa.ForeignKey("repositories.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("state", sa.String(16), server_default="open"),
        sa.Column("first_commit_sha", sa.String(64), nullable=True),
        sa.Column("merged_at", sa.DateTime(timezone=True), nullable=True),
    )

    op.create_table(
        "teams",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("name", sa.String(256), nullable=False, unique=True),
    )

    op.create_table(
        "developers",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("github_username", sa.String(256), nullable=False, unique=True),
        sa.Column(
            "team_id",
            sa.String(64),
            sa.ForeignKey("teams.id", ondelete="SET NULL"),
            nullable=True,
            index=True,
        ),
    )

    op.create_table(
        "sync_watermarks",
        sa.Column("job_name", sa.String(256), primary_key=True),
        sa.Column("last_successful_run", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )


def downgrade() -> None:
    op.drop_table("sync_watermarks")
    op.drop_table("developers")
    op.drop_table("teams")
    op.drop_table("pull_requests")
    op.drop_index("ix_incidents_service_start", table_name="incidents")
    op.drop_table("incidents")
    op.drop_table("change_lead_times")
    op.drop_index("ix_deployments_unprocessed", table_name="deployments")
    op.drop_index("ix_deployments_repo_env_created", table_name="deployments")
    op.drop_table("deployments")
    op.drop_table("commit_parents")
    op.drop_index("ix_commits_sha", table_name="commits")
    op.drop_table("commits")
    op.drop_table("repositories")
