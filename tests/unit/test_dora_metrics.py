"""Tests for the DORA period metrics engine."""

from __future__ import annotations

from datetime import date

import pytest

from doratrack.analytics.dora_metrics import (
    DORALevel,
    DORAMetricsEngine,
    DORAMetricType,
    average_recovery_seconds,
    classify_change_failure_rate,
    classify_level,
)
from doratrack.models.base import Deployment, Incident, IncidentState, PeriodType
from tests.fakes import InMemoryStore, ts

WEEK_START = date(2025, 11, 3)
WEEK_END = date(2025, 11, 9)


def _deploys(store: InMemoryStore, count: int, env: str = "production") -> None:
    store.add_deployments(
        *[
            Deployment(
                id=f"{env}-{i}",
                repository_id="repo-1",
                sha=f"s{i}",
                environment=env,
                created_at=ts("2025-11-04", i % 24),
            )
            for i in range(count)
        ]
    )


def _incidents(
    store: InMemoryStore,
    count: int,
    service: str = "checkout",
    state: IncidentState = IncidentState.ACTIVE,
    duration: int | None = None,
    day: str = "2025-11-05",
) -> None:
    store.add_incidents(
        *[
            Incident(
                external_id=f"{service}-{day}-{i}",
                service_name=service,
                state=state,
                start_time=ts(day, i % 24),
                duration_seconds=duration,
            )
            for i in range(count)
        ]
    )


# ── Classification ─────────────────────────────────────────────────


class TestClassification:
    @pytest.mark.parametrize(
        ("percentage", "level"),
        [
            (0.0, DORALevel.ELITE),
            (15.0, DORALevel.ELITE),
            (15.01, DORALevel.HIGH),
            (30.0, DORALevel.HIGH),
            (45.0, DORALevel.MEDIUM),
            (45.5, DORALevel.LOW),
            (160.0, DORALevel.LOW),
        ],
    )
    def test_change_failure_rate_bands(self, percentage, level):
        assert classify_change_failure_rate(percentage) == level

    def test_level_values_are_display_names(self):
        assert [lvl.value for lvl in DORALevel] == ["Elite", "High", "Medium", "Low"]

    def test_classify_level_dispatches(self):
        assert classify_level(DORAMetricType.DEPLOYMENT_FREQUENCY, 2.0) == DORALevel.ELITE
        assert classify_level(DORAMetricType.LEAD_TIME, 3 * 86400) == DORALevel.HIGH
        assert classify_level(DORAMetricType.MTTR, 30 * 86400) == DORALevel.LOW


class TestAverageRecovery:
    def test_empty(self):
        assert average_recovery_seconds([]) == (0, 0)

    def test_floor_and_missing_duration(self):
        incidents = [
            Incident(external_id="a", start_time=ts("2025-11-03"), duration_seconds=100),
            Incident(external_id="b", start_time=ts("2025-11-03"), duration_seconds=None),
            Incident(external_id="c", start_time=ts("2025-11-03"), duration_seconds=1),
        ]
        assert average_recovery_seconds(incidents) == (3, 33)


# ── Engine ─────────────────────────────────────────────────────────


class TestChangeFailureRate:
    @pytest.mark.asyncio
    async def test_zero_deployments_is_elite(self, store: InMemoryStore):
        _incidents(store, 3)

        [metric] = await DORAMetricsEngine(store).change_failure_rate(
            "checkout", "production", WEEK_START, WEEK_END, PeriodType.WEEKLY
        )

        assert metric.deployment_count == 0
        assert metric.incident_count == 3
        assert metric.rate == 0.0
        assert metric.dora_level == DORALevel.ELITE

    @pytest.mark.asyncio
    async def test_rate_above_one_is_low(self, store: InMemoryStore):
        _deploys(store, 5)
        _incidents(store, 8)

        [metric] = await DORAMetricsEngine(store).change_failure_rate(
            "checkout", "production", WEEK_START, WEEK_END, PeriodType.WEEKLY
        )

        assert metric.rate == pytest.approx(1.6)
        assert metric.rate_percentage == pytest.approx(160.0)
        assert metric.dora_level == DORALevel.LOW

    @pytest.mark.asyncio
    async def test_counts_only_target_environment_and_service(self, store: InMemoryStore):
        _deploys(store, 10)
        _deploys(store, 4, env="staging")
        _incidents(store, 1)
        _incidents(store, 5, service="payments")

        [metric] = await DORAMetricsEngine(store).change_failure_rate(
            "checkout", "production", WEEK_START, WEEK_END, PeriodType.WEEKLY
        )

        assert metric.deployment_count == 10
        assert metric.incident_count == 1
        assert metric.rate_percentage == pytest.approx(10.0)
        assert metric.dora_level == DORALevel.ELITE

    @pytest.mark.asyncio
    async def test_no_granularity_yields_no_buckets(self, store: InMemoryStore):
        result = await DORAMetricsEngine(store).change_failure_rate(
            "checkout", "production", WEEK_START, WEEK_END, None
        )
        assert result == []


class TestMeanTimeToRecovery:
    @pytest.mark.asyncio
    async def test_no_resolved_incidents_is_zero(self, store: InMemoryStore):
        _incidents(store, 2, duration=600)

        [metric] = await DORAMetricsEngine(store).mean_time_to_recovery(
            "checkout", WEEK_START, WEEK_END, PeriodType.WEEKLY
        )

        assert metric.resolved_incident_count == 0
        assert metric.average_duration_seconds == 0

    @pytest.mark.asyncio
    async def test_average_is_floored(self, store: InMemoryStore):
        store.add_incidents(
            Incident(
                external_id="a",
                service_name="checkout",
                state=IncidentState.RESOLVED,
                start_time=ts("2025-11-04"),
                duration_seconds=3600,
            ),
            Incident(
                external_id="b",
                service_name="checkout",
                state=IncidentState.RESOLVED,
                start_time=ts("2025-11-05"),
                duration_seconds=3601,
            ),
        )

        [metric] = await DORAMetricsEngine(store).mean_time_to_recovery(
            "checkout", WEEK_START, WEEK_END, PeriodType.WEEKLY
        )

        assert metric.resolved_incident_count == 2
        assert metric.average_duration_seconds == 3600
        assert metric.average_duration_minutes == 60.0
        assert metric.dora_level == DORALevel.ELITE

    @pytest.mark.asyncio
    async def test_incidents_bucketed_by_start(self, store: InMemoryStore):
        _incidents(store, 1, state=IncidentState.RESOLVED, duration=120, day="2025-11-04")
        _incidents(store, 1, state=IncidentState.RESOLVED, duration=60, day="2025-11-11")

        metrics = await DORAMetricsEngine(store).mean_time_to_recovery(
            "checkout", WEEK_START, date(2025, 11, 16), PeriodType.WEEKLY
        )

        assert [m.average_duration_seconds for m in metrics] == [120, 60]


class TestDeploymentFrequency:
    @pytest.mark.asyncio
    async def test_per_day_rate(self, store: InMemoryStore):
        _deploys(store, 14)

        [metric] = await DORAMetricsEngine(store).deployment_frequency(
            "production", WEEK_START, WEEK_END, PeriodType.WEEKLY
        )

        assert metric.deployment_count == 14
        assert metric.deployments_per_day == pytest.approx(2.0)
        assert metric.dora_level == DORALevel.ELITE

    @pytest.mark.asyncio
    async def test_empty_bucket(self, store: InMemoryStore):
        metrics = await DORAMetricsEngine(store).deployment_frequency(
            "production", WEEK_START, date(2025, 11, 16), PeriodType.WEEKLY
        )
        assert [m.deployment_count for m in metrics] == [0, 0]
        assert metrics[0].dora_level == DORALevel.LOW


class TestStats:
    @pytest.mark.asyncio
    async def test_get_stats_summary(self, store: InMemoryStore):
        _deploys(store, 4)
        _incidents(store, 1, state=IncidentState.RESOLVED, duration=900)

        stats = await DORAMetricsEngine(store).get_stats(
            "checkout", "production", WEEK_START, WEEK_END
        )

        assert stats["deployments"] == 4
        assert stats["incidents"] == 1
        assert stats["change_failure_rate"] == pytest.approx(0.25)
        assert stats["change_failure_level"] == "High"
        assert stats["mttr_seconds"] == 900
