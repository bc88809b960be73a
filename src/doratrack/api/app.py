"""FastAPI application entry point."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Any

import structlog
from fastapi import FastAPI
from fastapi.responses import JSONResponse

from doratrack.analytics.dashboards import DashboardService
from doratrack.analytics.dora_aggregate import DoraAggregator
from doratrack.analytics.dora_metrics import DORAMetricsEngine
from doratrack.api.exceptions import register_exception_handlers
from doratrack.api.routes import dashboards, metrics
from doratrack.changes.lead_time import LeadTimeCalculator
from doratrack.config import settings
from doratrack.incidents.correlator import IncidentCorrelator
from doratrack.sync.sources import (
    CommitSource,
    DeploymentSource,
    IncidentSource,
    PullRequestSource,
)

logger = structlog.get_logger()


def _configure_sources(app: FastAPI) -> None:
    """Fill unset upstream sources from credentials in settings."""
    if settings.github_token:
        from doratrack.sync.github import GitHubClient

        github = GitHubClient(
            settings.github_token,
            base_url=settings.github_api_url,
            timeout=settings.http_timeout_seconds,
        )
        if app.state.commit_source is None:
            app.state.commit_source = github
        if app.state.deployment_source is None:
            app.state.deployment_source = github
        if app.state.pull_request_source is None:
            app.state.pull_request_source = github
    if settings.datadog_api_key and app.state.incident_source is None:
        from doratrack.sync.datadog import DatadogIncidentClient

        app.state.incident_source = DatadogIncidentClient(
            settings.datadog_api_key,
            settings.datadog_application_key,
            base_url=settings.datadog_base_url,
            timeout=settings.http_timeout_seconds,
        )


def _build_scheduler(app: FastAPI, repository: Any, calculator: LeadTimeCalculator) -> Any:
    from doratrack.scheduler import JobScheduler
    from doratrack.scheduler.jobs import lead_time_pass, sync_pass
    from doratrack.sync.runners import (
        CommitSyncRunner,
        DeploymentSyncRunner,
        IncidentSyncRunner,
        PullRequestSyncRunner,
    )

    scheduler = JobScheduler()
    scheduler.add_job(
        "lead_time_pass",
        lead_time_pass,
        interval_seconds=settings.lead_time_interval_seconds,
        calculator=calculator,
    )

    lookback = timedelta(days=settings.sync_lookback_days)
    commit_source: CommitSource | None = app.state.commit_source
    if commit_source is not None:
        scheduler.add_job(
            "commit_sync",
            sync_pass,
            interval_seconds=settings.commit_sync_interval_seconds,
            runner=CommitSyncRunner(
                repository,
                commit_source,
                lookback=timedelta(days=settings.commit_sync_lookback_days),
            ),
        )
    pull_request_source: PullRequestSource | None = app.state.pull_request_source
    if pull_request_source is not None:
        scheduler.add_job(
            "pull_request_sync",
            sync_pass,
            interval_seconds=settings.pull_request_sync_interval_seconds,
            runner=PullRequestSyncRunner(
                repository,
                pull_request_source,
                lookback=timedelta(days=settings.pull_request_sync_lookback_days),
            ),
        )
    deployment_source: DeploymentSource | None = app.state.deployment_source
    if deployment_source is not None:
        scheduler.add_job(
            "deployment_sync",
            sync_pass,
            interval_seconds=settings.deployment_sync_interval_seconds,
            runner=DeploymentSyncRunner(
                repository,
                deployment_source,
                lead_time=calculator,
                lookback=lookback,
                target_environment=settings.target_environment,
                release_branch=settings.release_branch,
            ),
        )
    incident_source: IncidentSource | None = app.state.incident_source
    if incident_source is not None:
        scheduler.add_job(
            "incident_sync",
            sync_pass,
            interval_seconds=settings.incident_sync_interval_seconds,
            runner=IncidentSyncRunner(repository, incident_source, lookback=lookback),
        )
    return scheduler


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application startup and shutdown lifecycle."""
    logger.info("doratrack_starting", environment=settings.environment)

    # ── Database layer ──────────────────────────────────────────
    repository = None
    session_factory = None
    engine = None
    try:
        from sqlalchemy import text

        from doratrack.db.repository import Repository
        from doratrack.db.session import create_async_engine, get_session_factory

        engine = create_async_engine(settings.database_url, pool_size=settings.database_pool_size)
        session_factory = get_session_factory()
        async with session_factory() as session:
            await session.execute(text("SELECT 1"))
        repository = Repository(session_factory)
        logger.info("database_initialized")
    except Exception as e:
        logger.warning("database_init_failed", error=str(e))
        session_factory = None
        repository = None
        if engine:
            await engine.dispose()
            engine = None

    app.state.session_factory = session_factory
    app.state.repository = repository
    app.state.engine = engine

    # ── Metrics engine & dashboards ─────────────────────────────
    scheduler = None
    if repository is not None:
        correlator = IncidentCorrelator(
            timedelta(hours=settings.incident_correlation_window_hours)
        )
        metrics.set_engine(DORAMetricsEngine(repository))
        dashboards.set_service(DashboardService(repository, DoraAggregator(repository, correlator)))
        logger.info("metrics_engine_initialized")

        calculator = LeadTimeCalculator(repository, settings.target_environment)
        if settings.scheduler_enabled:
            _configure_sources(app)
            scheduler = _build_scheduler(app, repository, calculator)
            await scheduler.start()
            logger.info("scheduler_initialized", jobs=len(scheduler.list_jobs()))
    app.state.scheduler = scheduler

    yield

    logger.info("doratrack_shutting_down")
    if scheduler is not None:
        await scheduler.stop()
    metrics.set_engine(None)
    dashboards.set_service(None)
    if engine:
        await engine.dispose()


def create_app(
    commit_source: CommitSource | None = None,
    deployment_source: DeploymentSource | None = None,
    incident_source: IncidentSource | None = None,
    pull_request_source: PullRequestSource | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Upstream sources are optional; sync jobs are scheduled only for the
    sources that are provided.
    """
    app = FastAPI(
        title="doratrack API",
        description="DORA metrics from commits, deployments and incidents",
        version=settings.app_version,
        lifespan=lifespan,
        docs_url=f"{settings.api_prefix}/docs",
        openapi_url=f"{settings.api_prefix}/openapi.json",
    )
    app.state.commit_source = commit_source
    app.state.deployment_source = deployment_source
    app.state.incident_source = incident_source
    app.state.pull_request_source = pull_request_source

    register_exception_handlers(app)

    app.include_router(metrics.router, prefix=settings.api_prefix, tags=["Metrics"])
    app.include_router(dashboards.router, prefix=settings.api_prefix, tags=["Dashboards"])

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        return {"status": "healthy", "version": settings.app_version}

    @app.get("/ready", response_model=None)
    async def readiness_check() -> dict[str, Any] | JSONResponse:
        """Check readiness of the database and scheduler."""
        checks: dict[str, str] = {}
        all_ok = True

        sf = getattr(app.state, "session_factory", None)
        if sf:
            try:
                from sqlalchemy import text

                async with sf() as session:
                    await session.execute(text("SELECT 1"))
                checks["database"] = "ok"
            except Exception as e:
                checks["database"] = f"error: {e}"
                all_ok = False
        else:
            checks["database"] = "not_configured"
            all_ok = False

        scheduler = getattr(app.state, "scheduler", None)
        checks["scheduler"] = "running" if scheduler and scheduler.running else "stopped"

        return JSONResponse(
            status_code=200 if all_ok else 503,
            content={
                "status": "ready" if all_ok else "degraded",
                "version": settings.app_version,
                "checks": checks,
            },
        )

    return app


app = create_app()
