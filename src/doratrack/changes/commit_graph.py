"""In-memory commit ancestry graph for one repository.

Nodes are stored in an arena keyed by sha with parent and child adjacency
lists. All walks are iterative breadth-first searches with a visited set, so
merge commits are handled without revisiting shared history and deep
histories never hit the recursion limit. A parent sha with no stored commit
is treated as the end of that branch.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Iterable, Iterator

from doratrack.models.base import Commit


class CommitGraph:
    """Commit DAG for a single repository."""

    def __init__(self, commits: Iterable[Commit] = ()) -> None:
        self._nodes: dict[str, Commit] = {}
        self._parents: dict[str, list[str]] = {}
        self._children: dict[str, list[str]] = {}
        for commit in commits:
            self.add(commit)

    def add(self, commit: Commit) -> None:
        if commit.sha in self._nodes:
            return
        self._nodes[commit.sha] = commit
        self._parents[commit.sha] = list(commit.parent_shas)
        for parent in commit.parent_shas:
            self._children.setdefault(parent, []).append(commit.sha)

    def get(self, sha: str) -> Commit | None:
        return self._nodes.get(sha)

    def __contains__(self, sha: object) -> bool:
        return sha in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def __iter__(self) -> Iterator[Commit]:
        return iter(self._nodes.values())

    def parents(self, sha: str) -> list[str]:
        return list(self._parents.get(sha, ()))

    def children(self, sha: str) -> list[str]:
        return list(self._children.get(sha, ()))

    # -- Walks ------------------------------------------------------------------

    def ancestors(self, sha: str) -> set[str]:
        """Return ``sha`` and every stored commit reachable through parents.

        Returns an empty set when ``sha`` itself is not stored.
        """
        if sha not in self._nodes:
            return set()
        seen = {sha}
        queue = deque([sha])
        while queue:
            current = queue.popleft()
            for parent in self._parents.get(current, ()):
                if parent in seen or parent not in self._nodes:
                    continue
                seen.add(parent)
                queue.append(parent)
        return seen

    def walk_until(self, sha: str, boundary: set[str]) -> list[str]:
        """Breadth-first walk from ``sha`` that stops at ``boundary``.

        Boundary shas are neither returned nor expanded. Order is BFS order
        from ``sha``, which makes results deterministic for a given graph.
        """
        if sha not in self._nodes or sha in boundary:
            return []
        visited = {sha}
        ordered = [sha]
        queue = deque([sha])
        while queue:
            current = queue.popleft()
            for parent in self._parents.get(current, ()):
                if parent in visited or parent in boundary or parent not in self._nodes:
                    continue
                visited.add(parent)
                ordered.append(parent)
                queue.append(parent)
        return ordered

    def descendants(self, sha: str) -> set[str]:
        """Return ``sha`` and every commit reachable by following child edges."""
        seen = {sha}
        queue = deque([sha])
        while queue:
            current = queue.popleft()
            for child in self._children.get(current, ()):
                if child not in seen:
                    seen.add(child)
                    queue.append(child)
        return seen
