"""Deployment attribution over the commit graph.

A deployment is credited with the commits reachable from its sha that were
not already reachable from the previous deployment of the same repository
and environment. The previous deployment's full ancestor closure is the
boundary; the walk from the new sha neither returns nor expands any
boundary commit.
"""

from __future__ import annotations

from doratrack.changes.commit_graph import CommitGraph
from doratrack.models.base import Deployment


def compute_boundary(graph: CommitGraph, previous: Deployment | None) -> set[str]:
    """Ancestor closure of ``previous``'s commit, or an empty set."""
    if previous is None:
        return set()
    return graph.ancestors(previous.sha)


def attribute_commits(
    graph: CommitGraph,
    deployment: Deployment,
    previous: Deployment | None,
) -> list[str]:
    """Return the shas first shipped by ``deployment``.

    An unknown deployment sha yields an empty list; callers still mark the
    deployment as processed.
    """
    if deployment.sha not in graph:
        return []
    boundary = compute_boundary(graph, previous)
    return graph.walk_until(deployment.sha, boundary)
