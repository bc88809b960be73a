"""Incremental ingestion of commits, pull requests, deployments and incidents."""

from doratrack.sync.datadog import DatadogIncidentClient
from doratrack.sync.github import GitHubClient
from doratrack.sync.runners import (
    BatchSyncRunner,
    CommitSyncRunner,
    DeploymentSyncRunner,
    IncidentSyncRunner,
    PullRequestSyncRunner,
    SyncResult,
    SyncStore,
    map_incident_severity,
    map_incident_state,
)
from doratrack.sync.watermark import DEFAULT_LOOKBACK, Watermark, WatermarkStore

__all__ = [
    "DEFAULT_LOOKBACK",
    "BatchSyncRunner",
    "CommitSyncRunner",
    "DatadogIncidentClient",
    "DeploymentSyncRunner",
    "GitHubClient",
    "IncidentSyncRunner",
    "PullRequestSyncRunner",
    "SyncResult",
    "SyncStore",
    "Watermark",
    "WatermarkStore",
    "map_incident_severity",
    "map_incident_state",
]
