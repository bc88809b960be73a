"""doratrack CLI entry point."""

import asyncio
from datetime import date, timedelta
from typing import Any

import click
import uvicorn

from doratrack.config import settings


async def _with_repository(func: Any) -> Any:
    from doratrack.db.repository import Repository
    from doratrack.db.session import create_async_engine, dispose_engine, get_session_factory

    create_async_engine(settings.database_url, pool_size=settings.database_pool_size)
    try:
        return await func(Repository(get_session_factory()))
    finally:
        await dispose_engine()


@click.group()  # type: ignore[untyped-decorator]
@click.version_option(version=settings.app_version)  # type: ignore[untyped-decorator]
def main() -> None:
    """doratrack - DORA metrics from commits, deployments and incidents."""


@main.command()  # type: ignore[untyped-decorator]
@click.option("--host", default=settings.api_host, help="API host")  # type: ignore[untyped-decorator]
@click.option("--port", default=settings.api_port, type=int, help="API port")  # type: ignore[untyped-decorator]
@click.option("--reload", is_flag=True, help="Enable auto-reload for development")  # type: ignore[untyped-decorator]
def serve(host: str, port: int, reload: bool) -> None:
    """Start the doratrack API server."""
    uvicorn.run(
        "doratrack.api.app:app",
        host=host,
        port=port,
        reload=reload,
    )


@main.command()  # type: ignore[untyped-decorator]
@click.option("--revision", default="head", help="Target revision")  # type: ignore[untyped-decorator]
@click.option("--downgrade", is_flag=True, help="Roll back instead of upgrading")  # type: ignore[untyped-decorator]
def migrate(revision: str, downgrade: bool) -> None:
    """Apply or roll back database migrations."""
    from doratrack.db.migrate import run_downgrade, run_upgrade

    if downgrade:
        target = "-1" if revision == "head" else revision
        asyncio.run(run_downgrade(target))
        click.echo(f"Downgraded to {target}")
    else:
        asyncio.run(run_upgrade(revision))
        click.echo(f"Upgraded to {revision}")


@main.command("lead-time")  # type: ignore[untyped-decorator]
@click.option(  # type: ignore[untyped-decorator]
    "--environment", default=settings.target_environment, help="Deployment environment"
)
def lead_time(environment: str) -> None:
    """Attribute commits to unprocessed deployments."""
    from doratrack.changes.lead_time import LeadTimeCalculator

    async def _run(repository: Any) -> Any:
        return await LeadTimeCalculator(repository, environment).calculate()

    result = asyncio.run(_with_repository(_run))
    click.echo(f"Deployments processed: {result.deployments_processed}")
    click.echo(f"Lead-time facts created: {result.facts_created}")
    click.echo(f"Deployments with missing commit: {result.missing_commit}")
    if result.failed:
        click.echo(f"Deployments failed: {result.failed}")


@main.command()  # type: ignore[untyped-decorator]
@click.argument(  # type: ignore[untyped-decorator]
    "kind", type=click.Choice(["commits", "pull-requests", "deployments", "incidents"])
)
def sync(kind: str) -> None:
    """Run one incremental sync pass for KIND."""
    from doratrack.changes.lead_time import LeadTimeCalculator
    from doratrack.sync.datadog import DatadogIncidentClient
    from doratrack.sync.github import GitHubClient
    from doratrack.sync.runners import (
        CommitSyncRunner,
        DeploymentSyncRunner,
        IncidentSyncRunner,
        PullRequestSyncRunner,
    )

    if kind != "incidents" and not settings.github_token:
        raise click.ClickException("DORATRACK_GITHUB_TOKEN is not set")
    if kind == "incidents" and not settings.datadog_api_key:
        raise click.ClickException("DORATRACK_DATADOG_API_KEY is not set")

    async def _run(repository: Any) -> Any:
        lookback = timedelta(days=settings.sync_lookback_days)
        runner: Any
        if kind == "incidents":
            source = DatadogIncidentClient(
                settings.datadog_api_key,
                settings.datadog_application_key,
                base_url=settings.datadog_base_url,
                timeout=settings.http_timeout_seconds,
            )
            runner = IncidentSyncRunner(repository, source, lookback=lookback)
        else:
            github = GitHubClient(
                settings.github_token,
                base_url=settings.github_api_url,
                timeout=settings.http_timeout_seconds,
            )
            if kind == "commits":
                runner = CommitSyncRunner(
                    repository, github, lookback=timedelta(days=settings.commit_sync_lookback_days)
                )
            elif kind == "pull-requests":
                runner = PullRequestSyncRunner(
                    repository,
                    github,
                    lookback=timedelta(days=settings.pull_request_sync_lookback_days),
                )
            else:
                runner = DeploymentSyncRunner(
                    repository,
                    github,
                    lead_time=LeadTimeCalculator(repository, settings.target_environment),
                    lookback=lookback,
                    target_environment=settings.target_environment,
                    release_branch=settings.release_branch,
                )
        return await runner.run()

    result = asyncio.run(_with_repository(_run))
    click.echo(f"Units synced: {result.units - result.units_failed}/{result.units}")
    click.echo(f"Records: {result.records} ({result.created} new, {result.records_failed} failed)")


@main.command("add-repository")  # type: ignore[untyped-decorator]
@click.argument("repository_url")  # type: ignore[untyped-decorator]
@click.option("--service", default=None, help="Incident-management service name")  # type: ignore[untyped-decorator]
@click.option("--workflow", default=None, help="Deployment workflow file, e.g. deploy.yml")  # type: ignore[untyped-decorator]
def add_repository(repository_url: str, service: str | None, workflow: str | None) -> None:
    """Register REPOSITORY_URL for syncing."""
    from doratrack.models.base import RepositoryConfig

    config = RepositoryConfig(
        repository_url=repository_url,
        service_name=service,
        deployment_workflow=workflow,
    )
    if config.full_name is None:
        raise click.ClickException(
            f"Expected https://github.com/<owner>/<repo>, got {repository_url}"
        )

    async def _run(repository: Any) -> Any:
        return await repository.add_repository(config)

    added = asyncio.run(_with_repository(_run))
    click.echo(f"Registered {config.full_name} as {added.id}")


@main.command()  # type: ignore[untyped-decorator]
@click.argument("service_name")  # type: ignore[untyped-decorator]
@click.option("--days", default=30, type=int, help="Lookback window in days")  # type: ignore[untyped-decorator]
@click.option(  # type: ignore[untyped-decorator]
    "--environment", default=settings.target_environment, help="Deployment environment"
)
def metrics(service_name: str, days: int, environment: str) -> None:
    """Print DORA figures for SERVICE_NAME over the last --days."""
    from doratrack.analytics.dora_metrics import DORAMetricsEngine

    end = date.today()
    start = end - timedelta(days=days - 1)

    async def _run(repository: Any) -> Any:
        return await DORAMetricsEngine(repository).get_stats(service_name, environment, start, end)

    stats = asyncio.run(_with_repository(_run))
    click.echo(f"{service_name} ({environment}) {start.isoformat()} .. {end.isoformat()}")
    click.echo(f"Deployments: {stats['deployments']}")
    click.echo(f"Incidents: {stats['incidents']}")
    click.echo(
        f"Change failure rate: {stats['change_failure_rate']:.2%} "
        f"({stats['change_failure_level']})"
    )
    click.echo(f"Resolved incidents: {stats['resolved_incidents']}")
    click.echo(f"MTTR: {stats['mttr_seconds']}s")


@main.command()  # type: ignore[untyped-decorator]
def status() -> None:
    """Show doratrack configuration status."""
    click.echo(f"doratrack v{settings.app_version}")
    click.echo(f"Environment: {settings.environment}")
    click.echo(f"Target deployment environment: {settings.target_environment}")
    click.echo(f"Incident correlation window: {settings.incident_correlation_window_hours}h")


if __name__ == "__main__":
    main()
