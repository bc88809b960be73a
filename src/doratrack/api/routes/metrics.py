"""Period DORA metrics endpoints."""

from datetime import date

from fastapi import APIRouter

from doratrack.analytics.dora_metrics import (
    ChangeFailureRateMetric,
    DeploymentFrequencyMetric,
    DORAMetricsEngine,
    MTTRMetric,
)
from doratrack.api.exceptions import ServiceUnavailableError, ValidationError
from doratrack.config import settings
from doratrack.models.base import PeriodType

router = APIRouter(prefix="/metrics")

_engine: DORAMetricsEngine | None = None


def set_engine(engine: DORAMetricsEngine | None) -> None:
    global _engine
    _engine = engine


def _get_engine(start_date: date, end_date: date) -> DORAMetricsEngine:
    if _engine is None:
        raise ServiceUnavailableError("Metrics engine not initialized")
    if start_date > end_date:
        raise ValidationError(f"start_date {start_date} is after end_date {end_date}")
    return _engine


@router.get("/deployment-frequency")
async def deployment_frequency(
    start_date: date,
    end_date: date,
    period_type: PeriodType | None = None,
    environment: str | None = None,
) -> list[DeploymentFrequencyMetric]:
    engine = _get_engine(start_date, end_date)
    environment = environment or settings.target_environment
    return await engine.deployment_frequency(environment, start_date, end_date, period_type)


@router.get("/change-failure-rate")
async def change_failure_rate(
    service_name: str,
    start_date: date,
    end_date: date,
    period_type: PeriodType | None = None,
    environment: str | None = None,
) -> list[ChangeFailureRateMetric]:
    engine = _get_engine(start_date, end_date)
    environment = environment or settings.target_environment
    return await engine.change_failure_rate(
        service_name, environment, start_date, end_date, period_type
    )


@router.get("/mttr")
async def mean_time_to_recovery(
    service_name: str,
    start_date: date,
    end_date: date,
    period_type: PeriodType | None = None,
) -> list[MTTRMetric]:
    engine = _get_engine(start_date, end_date)
    return await engine.mean_time_to_recovery(service_name, start_date, end_date, period_type)
