"""Core data models for doratrack."""

from doratrack.models.base import (
    Commit,
    Deployment,
    Developer,
    Incident,
    IncidentSeverity,
    IncidentState,
    LeadTimeFact,
    PeriodType,
    PullRequest,
    RepositoryConfig,
    Team,
    utcnow,
)

__all__ = [
    "Commit",
    "Deployment",
    "Developer",
    "Incident",
    "IncidentSeverity",
    "IncidentState",
    "LeadTimeFact",
    "PeriodType",
    "PullRequest",
    "RepositoryConfig",
    "Team",
    "utcnow",
]
