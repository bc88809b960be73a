"""Deployment/incident correlation.

A deployment counts as failed when an incident starts inside the window
that opens at the deployment and the two share an identity key: the
service name when both sides carry one, otherwise the repository.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import timedelta

from doratrack.models.base import Deployment, Incident

CORRELATION_WINDOW = timedelta(hours=48)


class IncidentCorrelator:
    """Flags failed deployments by time window plus identity match."""

    def __init__(self, window: timedelta = CORRELATION_WINDOW) -> None:
        self._window = window

    @property
    def window(self) -> timedelta:
        return self._window

    @staticmethod
    def same_identity(deployment: Deployment, incident: Incident) -> bool:
        if deployment.service_name is not None and incident.service_name is not None:
            return deployment.service_name == incident.service_name
        if incident.repository_id is None:
            return False
        return deployment.repository_id == incident.repository_id

    def in_window(self, deployment: Deployment, incident: Incident) -> bool:
        return deployment.created_at <= incident.start_time < deployment.created_at + self._window

    def matches(self, deployment: Deployment, incident: Incident) -> bool:
        return self.in_window(deployment, incident) and self.same_identity(deployment, incident)

    def is_failed(self, deployment: Deployment, incidents: Iterable[Incident]) -> bool:
        return any(self.matches(deployment, incident) for incident in incidents)

    def failed_deployment_ids(
        self, deployments: Iterable[Deployment], incidents: Iterable[Incident]
    ) -> set[str]:
        incident_list = list(incidents)
        return {d.id for d in deployments if self.is_failed(d, incident_list)}


def change_failure_ratio(incident_count: int, deployment_count: int) -> float:
    """Portfolio change failure rate for a period.

    Not capped at 1.0: more incidents than deployments yields a ratio above
    one. Zero deployments yields 0.0.
    """
    if deployment_count <= 0:
        return 0.0
    return incident_count / deployment_count
