"""Tests for lead-time projection and the batch attribution pass."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from doratrack.changes.commit_graph import CommitGraph
from doratrack.changes.lead_time import (
    LeadTimeCalculator,
    lead_time_seconds,
    project_lead_times,
)
from doratrack.models.base import Commit, Deployment, LeadTimeFact
from tests.fakes import InMemoryStore, ts


def _commit(sha: str, *parents: str, when=None, repo: str = "repo-1") -> Commit:
    return Commit(
        sha=sha,
        repository_id=repo,
        author="alice",
        authored_at=when or ts("2025-11-01"),
        parent_shas=list(parents),
    )


def _deploy(dep_id: str, sha: str, when, repo: str = "repo-1", env: str = "production"):
    return Deployment(id=dep_id, repository_id=repo, sha=sha, environment=env, created_at=when)


class InterleavingStore(InMemoryStore):
    """Yields to the event loop on every read and rejects duplicate facts."""

    async def list_unprocessed_deployments(self, environment: str) -> list[Deployment]:
        pending = await super().list_unprocessed_deployments(environment)
        await asyncio.sleep(0)
        return pending

    async def load_commit_graph(self, repository_id: str) -> CommitGraph:
        await asyncio.sleep(0)
        return await super().load_commit_graph(repository_id)

    async def save_attribution(self, deployment_id: str, facts: list[LeadTimeFact]) -> None:
        await asyncio.sleep(0)
        existing = {(f.commit_sha, f.deployment.id) for f in self.facts}
        if any((f.commit_sha, deployment_id) in existing for f in facts):
            raise RuntimeError("duplicate key value violates uq_lead_times_commit_deployment")
        await super().save_attribution(deployment_id, facts)


# ── Projection ──────────────────────────────────────────────────────


class TestProjection:
    def test_seconds_are_floored(self):
        commit = _commit("c", when=ts("2025-11-01", 10))
        deployment = _deploy("d", "c", ts("2025-11-01", 12).replace(microsecond=900000))
        assert lead_time_seconds(commit, deployment) == 7200

    def test_negative_lead_time_is_kept(self):
        commit = _commit("c", when=ts("2025-11-02"))
        deployment = _deploy("d", "c", ts("2025-11-01"))
        facts = project_lead_times(deployment, [commit])
        assert facts[0].lead_time_seconds == -86400

    def test_one_fact_per_commit(self):
        deployment = _deploy("d", "c2", ts("2025-11-03"))
        facts = project_lead_times(
            deployment, [_commit("c1", when=ts("2025-11-01")), _commit("c2", when=ts("2025-11-02"))]
        )
        assert [(f.commit_sha, f.lead_time_seconds) for f in facts] == [
            ("c1", 172800),
            ("c2", 86400),
        ]
        assert facts[0].lead_time_hours == 48.0


# ── Batch pass ──────────────────────────────────────────────────────


class TestLeadTimeCalculator:
    @pytest.mark.asyncio
    async def test_linear_scenario(self, store: InMemoryStore):
        store.add_commits(
            _commit("c1", when=ts("2025-11-01", 9)),
            _commit("c2", "c1", when=ts("2025-11-02", 9)),
            _commit("c3", "c2", when=ts("2025-11-03", 9)),
        )
        store.add_deployments(
            _deploy("P", "c1", ts("2025-11-01", 12)),
            _deploy("D", "c3", ts("2025-11-04", 9)),
        )

        result = await LeadTimeCalculator(store).calculate()

        assert result.deployments_processed == 2
        assert {f.commit_sha for f in store.facts_for("P")} == {"c1"}
        d_facts = {f.commit_sha: f.lead_time_seconds for f in store.facts_for("D")}
        assert d_facts == {"c2": 2 * 86400, "c3": 86400}

    @pytest.mark.asyncio
    async def test_disjointness_and_union(self, store: InMemoryStore):
        store.add_commits(
            _commit("c1"),
            _commit("c2", "c1"),
            _commit("c3", "c2"),
            _commit("c4", "c3"),
            _commit("c5", "c4"),
        )
        store.add_deployments(
            _deploy("d1", "c2", ts("2025-11-05")),
            _deploy("d2", "c4", ts("2025-11-06")),
            _deploy("d3", "c5", ts("2025-11-07")),
        )

        await LeadTimeCalculator(store).calculate()

        sets = [{f.commit_sha for f in store.facts_for(d)} for d in ("d1", "d2", "d3")]
        assert sets[0].isdisjoint(sets[1])
        assert sets[1].isdisjoint(sets[2])
        assert set().union(*sets) == {"c1", "c2", "c3", "c4", "c5"}
        assert len(store.facts) == 5

    @pytest.mark.asyncio
    async def test_idempotent_rerun(self, store: InMemoryStore):
        store.add_commits(_commit("c1"), _commit("c2", "c1"))
        store.add_deployments(_deploy("d1", "c2", ts("2025-11-05")))

        first = await LeadTimeCalculator(store).calculate()
        second = await LeadTimeCalculator(store).calculate()

        assert first.facts_created == 2
        assert second.deployments_processed == 0
        assert second.facts_created == 0
        assert len(store.facts) == 2

    @pytest.mark.asyncio
    async def test_merge_commit_scenario(self, store: InMemoryStore):
        store.add_commits(
            _commit("base"),
            _commit("x1", "base"),
            _commit("y1", "base"),
            _commit("m", "x1", "y1"),
        )
        store.add_deployments(
            _deploy("d0", "base", ts("2025-11-02")),
            _deploy("d1", "m", ts("2025-11-05")),
        )

        await LeadTimeCalculator(store).calculate()

        assert sorted(f.commit_sha for f in store.facts_for("d1")) == ["m", "x1", "y1"]

    @pytest.mark.asyncio
    async def test_missing_commit_still_marks_processed(self, store: InMemoryStore):
        store.add_deployments(_deploy("d1", "unknown", ts("2025-11-05")))

        result = await LeadTimeCalculator(store).calculate()

        assert result.missing_commit == 1
        assert store.deployments["d1"].lead_time_processed is True
        assert store.facts == []

    @pytest.mark.asyncio
    async def test_other_environments_are_ignored(self, store: InMemoryStore):
        store.add_commits(_commit("c1"))
        store.add_deployments(_deploy("s1", "c1", ts("2025-11-05"), env="staging"))

        result = await LeadTimeCalculator(store, environment="production").calculate()

        assert result.deployments_processed == 0
        assert store.deployments["s1"].lead_time_processed is False

    @pytest.mark.asyncio
    async def test_already_attributed_commits_are_dropped(self, store: InMemoryStore):
        # d2 merges c1 back in: c1 is outside d1's closure but already
        # belongs to d0.
        store.add_commits(
            _commit("c0"),
            _commit("c1", "c0"),
            _commit("side", "c0"),
        )
        store.add_deployments(
            _deploy("d0", "c1", ts("2025-11-01")),
            _deploy("d1", "side", ts("2025-11-02")),
        )
        await LeadTimeCalculator(store).calculate()
        store.add_commits(_commit("m", "c1", "side"))
        store.add_deployments(_deploy("d2", "m", ts("2025-11-03")))

        await LeadTimeCalculator(store).calculate()

        assert [f.commit_sha for f in store.facts_for("d2")] == ["m"]
        shas = [f.commit_sha for f in store.facts]
        assert len(shas) == len(set(shas))

    @pytest.mark.asyncio
    async def test_graph_loaded_once_per_repository(self, store: InMemoryStore):
        store.add_commits(_commit("c1"), _commit("c2", "c1"), _commit("c3", "c2"))
        store.add_deployments(
            _deploy("d1", "c1", ts("2025-11-01")),
            _deploy("d2", "c2", ts("2025-11-02")),
            _deploy("d3", "c3", ts("2025-11-03")),
        )

        await LeadTimeCalculator(store).calculate()

        assert store.graph_loads == 1

    @pytest.mark.asyncio
    async def test_repositories_are_independent(self, store: InMemoryStore):
        store.add_commits(_commit("a1", repo="r1"), _commit("b1", repo="r2"))
        store.add_deployments(
            _deploy("da", "a1", ts("2025-11-01"), repo="r1"),
            _deploy("db", "b1", ts("2025-11-02"), repo="r2"),
        )

        await LeadTimeCalculator(store).calculate()

        assert [f.commit_sha for f in store.facts_for("da")] == ["a1"]
        assert [f.commit_sha for f in store.facts_for("db")] == ["b1"]

    @pytest.mark.asyncio
    async def test_failed_save_leaves_deployment_for_next_pass(self):
        store = AsyncMock()
        deployment = _deploy("d1", "c1", ts("2025-11-01"))
        store.list_unprocessed_deployments.return_value = [deployment]
        store.load_commit_graph.return_value = CommitGraph([_commit("c1")])
        store.get_previous_deployment.return_value = None
        store.get_attributed_shas.return_value = set()
        store.save_attribution.side_effect = RuntimeError("db down")

        result = await LeadTimeCalculator(store).calculate()

        assert result.failed == 1
        assert result.deployments_processed == 0

    @pytest.mark.asyncio
    async def test_concurrent_passes_do_not_overlap(self):
        store = InterleavingStore()
        store.add_commits(_commit("c1"), _commit("c2", "c1"))
        store.add_deployments(_deploy("d1", "c2", ts("2025-11-05")))
        calculator = LeadTimeCalculator(store)

        first, second = await asyncio.gather(calculator.calculate(), calculator.calculate())

        assert first.deployments_processed + second.deployments_processed == 1
        assert first.failed == 0
        assert second.failed == 0
        assert first.facts_created + second.facts_created == 2
        assert sorted(f.commit_sha for f in store.facts_for("d1")) == ["c1", "c2"]
