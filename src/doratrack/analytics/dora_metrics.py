"""DORA period metrics engine.

Computes deployment frequency, change failure rate (portfolio ratio form)
and mean time to recovery per calendar bucket, and classifies values into
DORA performance levels.
"""

from __future__ import annotations

import enum
from collections.abc import Iterable
from datetime import date, datetime
from typing import Any, Protocol

import structlog
from pydantic import BaseModel

from doratrack.analytics.periods import Period, iter_periods
from doratrack.incidents.correlator import change_failure_ratio
from doratrack.models.base import Incident, IncidentState, PeriodType

logger = structlog.get_logger()


# -- Enums --------------------------------------------------------------------


class DORALevel(enum.StrEnum):
    ELITE = "Elite"
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


class DORAMetricType(enum.StrEnum):
    DEPLOYMENT_FREQUENCY = "deployment_frequency"
    LEAD_TIME = "lead_time"
    CHANGE_FAILURE_RATE = "change_failure_rate"
    MTTR = "mttr"


# -- Models --------------------------------------------------------------------


class DeploymentFrequencyMetric(BaseModel):
    period_start: date
    period_end: date
    environment: str
    deployment_count: int = 0
    deployments_per_day: float = 0.0
    dora_level: DORALevel = DORALevel.LOW


class ChangeFailureRateMetric(BaseModel):
    period_start: date
    period_end: date
    service_name: str
    environment: str
    deployment_count: int = 0
    incident_count: int = 0
    rate: float = 0.0
    rate_percentage: float = 0.0
    dora_level: DORALevel = DORALevel.ELITE


class MTTRMetric(BaseModel):
    period_start: date
    period_end: date
    service_name: str
    resolved_incident_count: int = 0
    average_duration_seconds: int = 0
    dora_level: DORALevel = DORALevel.ELITE

    @property
    def average_duration_minutes(self) -> float:
        return self.average_duration_seconds / 60.0

    @property
    def average_duration_hours(self) -> float:
        return self.average_duration_seconds / 3600.0


# -- Store contract ------------------------------------------------------------


class MetricsStore(Protocol):
    async def count_deployments(self, environment: str, start: datetime, end: datetime) -> int: ...

    async def count_incidents(self, service_name: str, start: datetime, end: datetime) -> int: ...

    async def list_incidents(
        self,
        service_name: str | None = None,
        state: IncidentState | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        repository_ids: Iterable[str] | None = None,
    ) -> list[Incident]: ...


# -- Classification --------------------------------------------------------------


def classify_deployment_frequency(deploys_per_day: float) -> DORALevel:
    if deploys_per_day >= 1.0:
        return DORALevel.ELITE
    if deploys_per_day >= 1.0 / 7:
        return DORALevel.HIGH
    if deploys_per_day >= 1.0 / 30:
        return DORALevel.MEDIUM
    return DORALevel.LOW


def classify_lead_time(seconds: float) -> DORALevel:
    if seconds <= 86400:
        return DORALevel.ELITE
    if seconds <= 604800:
        return DORALevel.HIGH
    if seconds <= 2592000:
        return DORALevel.MEDIUM
    return DORALevel.LOW


def classify_change_failure_rate(percentage: float) -> DORALevel:
    """Band a CFR percentage. Upper bounds are inclusive."""
    if percentage <= 15:
        return DORALevel.ELITE
    if percentage <= 30:
        return DORALevel.HIGH
    if percentage <= 45:
        return DORALevel.MEDIUM
    return DORALevel.LOW


def classify_mttr(seconds: float) -> DORALevel:
    if seconds <= 3600:
        return DORALevel.ELITE
    if seconds <= 86400:
        return DORALevel.HIGH
    if seconds <= 604800:
        return DORALevel.MEDIUM
    return DORALevel.LOW


def classify_level(metric_type: DORAMetricType, value: float) -> DORALevel:
    if metric_type == DORAMetricType.DEPLOYMENT_FREQUENCY:
        return classify_deployment_frequency(value)
    if metric_type == DORAMetricType.LEAD_TIME:
        return classify_lead_time(value)
    if metric_type == DORAMetricType.CHANGE_FAILURE_RATE:
        return classify_change_failure_rate(value)
    if metric_type == DORAMetricType.MTTR:
        return classify_mttr(value)
    return DORALevel.LOW


def average_recovery_seconds(incidents: Iterable[Incident]) -> tuple[int, int]:
    """Return ``(count, floored average duration)``; a missing duration counts as 0."""
    durations = [incident.duration_seconds or 0 for incident in incidents]
    if not durations:
        return 0, 0
    return len(durations), sum(durations) // len(durations)


# -- Engine --------------------------------------------------------------------


class DORAMetricsEngine:
    """Compute DORA metrics per calendar bucket from the store.

    Parameters
    ----------
    store:
        Read-only query surface over deployments and incidents.
    """

    def __init__(self, store: MetricsStore) -> None:
        self._store = store

    async def deployment_frequency(
        self,
        environment: str,
        range_start: date,
        range_end: date,
        period_type: PeriodType | str | None,
    ) -> list[DeploymentFrequencyMetric]:
        metrics: list[DeploymentFrequencyMetric] = []
        for period in iter_periods(range_start, range_end, period_type):
            count = await self._store.count_deployments(environment, period.start_at, period.end_at)
            per_day = count / period.days
            metrics.append(
                DeploymentFrequencyMetric(
                    period_start=period.start,
                    period_end=period.end,
                    environment=environment,
                    deployment_count=count,
                    deployments_per_day=per_day,
                    dora_level=classify_deployment_frequency(per_day),
                )
            )
        logger.debug("dora.deployment_frequency", environment=environment, buckets=len(metrics))
        return metrics

    async def change_failure_rate_for_period(
        self, service_name: str, environment: str, period: Period
    ) -> ChangeFailureRateMetric:
        deployments = await self._store.count_deployments(
            environment, period.start_at, period.end_at
        )
        incidents = await self._store.count_incidents(service_name, period.start_at, period.end_at)
        rate = change_failure_ratio(incidents, deployments)
        percentage = rate * 100
        return ChangeFailureRateMetric(
            period_start=period.start,
            period_end=period.end,
            service_name=service_name,
            environment=environment,
            deployment_count=deployments,
            incident_count=incidents,
            rate=rate,
            rate_percentage=percentage,
            dora_level=classify_change_failure_rate(percentage),
        )

    async def change_failure_rate(
        self,
        service_name: str,
        environment: str,
        range_start: date,
        range_end: date,
        period_type: PeriodType | str | None,
    ) -> list[ChangeFailureRateMetric]:
        metrics = [
            await self.change_failure_rate_for_period(service_name, environment, period)
            for period in iter_periods(range_start, range_end, period_type)
        ]
        logger.debug("dora.change_failure_rate", service=service_name, buckets=len(metrics))
        return metrics

    async def mean_time_to_recovery_for_period(
        self, service_name: str, period: Period
    ) -> MTTRMetric:
        incidents = await self._store.list_incidents(
            service_name=service_name,
            state=IncidentState.RESOLVED,
            start=period.start_at,
            end=period.end_at,
        )
        count, average = average_recovery_seconds(incidents)
        return MTTRMetric(
            period_start=period.start,
            period_end=period.end,
            service_name=service_name,
            resolved_incident_count=count,
            average_duration_seconds=average,
            dora_level=classify_mttr(average),
        )

    async def mean_time_to_recovery(
        self,
        service_name: str,
        range_start: date,
        range_end: date,
        period_type: PeriodType | str | None,
    ) -> list[MTTRMetric]:
        metrics = [
            await self.mean_time_to_recovery_for_period(service_name, period)
            for period in iter_periods(range_start, range_end, period_type)
        ]
        logger.debug("dora.mttr", service=service_name, buckets=len(metrics))
        return metrics

    async def get_stats(
        self, service_name: str, environment: str, range_start: date, range_end: date
    ) -> dict[str, Any]:
        """Whole-range summary used by the CLI."""
        period = Period(start=range_start, end=range_end)
        deployments = await self._store.count_deployments(
            environment, period.start_at, period.end_at
        )
        cfr = await self.change_failure_rate_for_period(service_name, environment, period)
        mttr = await self.mean_time_to_recovery_for_period(service_name, period)
        return {
            "service_name": service_name,
            "environment": environment,
            "deployments": deployments,
            "incidents": cfr.incident_count,
            "change_failure_rate": cfr.rate,
            "change_failure_level": cfr.dora_level.value,
            "resolved_incidents": mttr.resolved_incident_count,
            "mttr_seconds": mttr.average_duration_seconds,
        }
