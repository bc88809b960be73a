"""Change attribution module.

Walks the commit graph to credit each commit to the deployment that first
shipped it and projects those attributions into lead-time facts.
"""

from doratrack.changes.attribution import attribute_commits, compute_boundary
from doratrack.changes.commit_graph import CommitGraph
from doratrack.changes.lead_time import (
    LeadTimeCalculator,
    LeadTimePassResult,
    LeadTimeStore,
    lead_time_seconds,
    project_lead_times,
)

__all__ = [
    "CommitGraph",
    "LeadTimeCalculator",
    "LeadTimePassResult",
    "LeadTimeStore",
    "attribute_commits",
    "compute_boundary",
    "lead_time_seconds",
    "project_lead_times",
]
