"""Tests for deployment/incident correlation."""

from __future__ import annotations

from datetime import timedelta

from doratrack.incidents.correlator import (
    CORRELATION_WINDOW,
    IncidentCorrelator,
    change_failure_ratio,
)
from doratrack.models.base import Deployment, Incident
from tests.fakes import ts

DEPLOYED_AT = ts("2025-11-03", 12)


def _deploy(service: str | None = "checkout", repo: str = "repo-1") -> Deployment:
    return Deployment(
        id="dep-1", repository_id=repo, sha="abc", service_name=service, created_at=DEPLOYED_AT
    )


def _incident(
    offset: timedelta, service: str | None = "checkout", repo: str | None = "repo-1"
) -> Incident:
    return Incident(
        external_id=f"inc-{offset}",
        repository_id=repo,
        service_name=service,
        start_time=DEPLOYED_AT + offset,
    )


class TestWindow:
    def test_default_window_is_48_hours(self):
        assert CORRELATION_WINDOW == timedelta(hours=48)
        assert IncidentCorrelator().window == timedelta(hours=48)

    def test_incident_at_deploy_time_is_inside(self):
        assert IncidentCorrelator().matches(_deploy(), _incident(timedelta(0)))

    def test_incident_at_window_end_is_outside(self):
        assert not IncidentCorrelator().matches(_deploy(), _incident(timedelta(hours=48)))

    def test_incident_just_before_window_end_is_inside(self):
        assert IncidentCorrelator().matches(_deploy(), _incident(timedelta(hours=47, minutes=59)))

    def test_incident_before_deploy_is_outside(self):
        assert not IncidentCorrelator().matches(_deploy(), _incident(timedelta(seconds=-1)))

    def test_custom_window(self):
        correlator = IncidentCorrelator(timedelta(hours=1))
        assert not correlator.matches(_deploy(), _incident(timedelta(hours=2)))


class TestIdentity:
    def test_service_names_must_match_when_both_present(self):
        incident = _incident(timedelta(hours=1), service="payments")
        assert not IncidentCorrelator().matches(_deploy(), incident)

    def test_service_match_ignores_repository(self):
        incident = _incident(timedelta(hours=1), repo="other-repo")
        assert IncidentCorrelator().matches(_deploy(), incident)

    def test_falls_back_to_repository_without_service(self):
        incident = _incident(timedelta(hours=1), service=None)
        assert IncidentCorrelator().matches(_deploy(), incident)

    def test_repository_fallback_requires_same_repository(self):
        incident = _incident(timedelta(hours=1), service=None, repo="other-repo")
        assert not IncidentCorrelator().matches(_deploy(), incident)

    def test_incident_without_repository_never_matches_on_fallback(self):
        incident = _incident(timedelta(hours=1), service=None, repo=None)
        assert not IncidentCorrelator().matches(_deploy(service=None), incident)


class TestFailedDeployments:
    def test_failed_deployment_ids(self):
        ok = _deploy().model_copy(update={"id": "ok", "created_at": ts("2025-10-01")})
        bad = _deploy()
        failed = IncidentCorrelator().failed_deployment_ids(
            [ok, bad], [_incident(timedelta(hours=3))]
        )
        assert failed == {"dep-1"}

    def test_no_incidents_no_failures(self):
        assert IncidentCorrelator().failed_deployment_ids([_deploy()], []) == set()


class TestChangeFailureRatio:
    def test_zero_deployments_is_zero(self):
        assert change_failure_ratio(3, 0) == 0.0

    def test_ratio_can_exceed_one(self):
        assert change_failure_ratio(8, 5) == 1.6

    def test_plain_ratio(self):
        assert change_failure_ratio(1, 4) == 0.25
