"""Tests for the Alembic migration framework.

Covers: the migration chain, the initial schema, env.py metadata and the
async runner functions used by ``doratrack migrate``.
"""

from __future__ import annotations

import importlib
import re
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from alembic.config import Config
from alembic.script import ScriptDirectory

from doratrack.db.models import Base

# ── Fixtures ──────────────────────────────────────────────────────────


@pytest.fixture
def alembic_cfg():
    """Alembic Config loaded from the project's alembic.ini."""
    return Config("alembic.ini")


def _load_initial():
    return importlib.import_module("doratrack.db.migrations.versions.001_initial_schema")


# ── Migration chain ──────────────────────────────────────────────────


class TestMigrationChain:
    def test_single_head(self, alembic_cfg):
        script = ScriptDirectory.from_config(alembic_cfg)
        heads = script.get_heads()
        assert len(heads) == 1, f"Expected 1 head, got {len(heads)}: {heads}"

    def test_initial_migration_is_base(self, alembic_cfg):
        script = ScriptDirectory.from_config(alembic_cfg)
        rev = script.get_revision("001")
        assert rev is not None
        assert rev.down_revision is None

    def test_config_points_to_package_migrations(self, alembic_cfg):
        location = alembic_cfg.get_main_option("script_location")
        assert "src/doratrack/db/migrations" in location


# ── Initial schema ───────────────────────────────────────────────────


class TestInitialMigration:
    def test_revision_identifiers(self):
        m = _load_initial()
        assert m.revision == "001"
        assert m.down_revision is None
        assert callable(m.upgrade)
        assert callable(m.downgrade)

    def test_creates_every_orm_table(self):
        source = Path(_load_initial().__file__).read_text()
        created = set(re.findall(r'op\.create_table\(\s*"(\w+)"', source))
        assert created == set(Base.metadata.tables)

    def test_downgrade_drops_every_created_table(self):
        source = Path(_load_initial().__file__).read_text()
        dropped = set(re.findall(r'op\.drop_table\("(\w+)"\)', source))
        assert dropped == set(Base.metadata.tables)


class TestMetadata:
    def test_expected_tables(self):
        tables = set(Base.metadata.tables)
        for name in (
            "repositories",
            "commits",
            "commit_parents",
            "deployments",
            "change_lead_times",
            "incidents",
            "sync_watermarks",
        ):
            assert name in tables

    def test_lead_time_is_unique_per_commit_and_deployment(self):
        table = Base.metadata.tables["change_lead_times"]
        unique_sets = [
            {c.name for c in constraint.columns}
            for constraint in table.constraints
            if constraint.__class__.__name__ == "UniqueConstraint"
        ]
        assert {"commit_sha", "deployment_id"} in unique_sets


# ── Migration runner functions ───────────────────────────────────────


class _AsyncContextManager:
    def __init__(self, return_value):
        self._return_value = return_value

    async def __aenter__(self):
        return self._return_value

    async def __aexit__(self, *args):
        return False


def _make_mock_engine(mock_conn):
    mock_engine = MagicMock()
    mock_engine.connect.return_value = _AsyncContextManager(mock_conn)
    mock_engine.dispose = AsyncMock()
    return mock_engine


def _mock_conn():
    conn = MagicMock()
    conn.run_sync = AsyncMock(side_effect=lambda fn: fn(conn))
    conn.commit = AsyncMock()
    return conn


class TestMigrationRunner:
    @pytest.mark.asyncio
    async def test_run_upgrade_calls_alembic_command(self):
        with (
            patch("doratrack.db.migrate.create_async_engine") as mock_engine_fn,
            patch("alembic.command.upgrade") as mock_upgrade,
        ):
            conn = _mock_conn()
            engine = _make_mock_engine(conn)
            mock_engine_fn.return_value = engine

            from doratrack.db.migrate import run_upgrade

            await run_upgrade("head")

            mock_upgrade.assert_called_once()
            cfg, revision = mock_upgrade.call_args[0]
            assert revision == "head"
            assert cfg.attributes["connection"] is conn
            conn.commit.assert_awaited_once()
            engine.dispose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_run_downgrade_calls_alembic_command(self):
        with (
            patch("doratrack.db.migrate.create_async_engine") as mock_engine_fn,
            patch("alembic.command.downgrade") as mock_downgrade,
        ):
            mock_engine_fn.return_value = _make_mock_engine(_mock_conn())

            from doratrack.db.migrate import run_downgrade

            await run_downgrade("-1")

            mock_downgrade.assert_called_once()
            assert mock_downgrade.call_args[0][1] == "-1"

    @pytest.mark.asyncio
    async def test_get_current_revision(self):
        with patch("doratrack.db.migrate.create_async_engine") as mock_engine_fn:
            mock_engine_fn.return_value = _make_mock_engine(_mock_conn())

            with patch("doratrack.db.migrate.MigrationContext.configure") as mock_ctx:
                mock_ctx.return_value.get_current_revision.return_value = "001"
                from doratrack.db.migrate import get_current_revision

                assert await get_current_revision() == "001"

    @pytest.mark.asyncio
    async def test_pending_when_all_applied(self):
        with (
            patch(
                "doratrack.db.migrate.get_current_revision",
                new_callable=AsyncMock,
                return_value="001",
            ),
            patch("doratrack.db.migrate._get_script_directory") as mock_script,
        ):
            mock_rev = MagicMock()
            mock_rev.revision = "001"
            mock_script.return_value.walk_revisions.return_value = [mock_rev]

            from doratrack.db.migrate import get_pending_migrations

            assert await get_pending_migrations() == []

    @pytest.mark.asyncio
    async def test_pending_on_empty_database(self):
        with (
            patch(
                "doratrack.db.migrate.get_current_revision",
                new_callable=AsyncMock,
                return_value=None,
            ),
            patch("doratrack.db.migrate._get_script_directory") as mock_script,
        ):
            revs = [MagicMock(revision="002"), MagicMock(revision="001")]
            mock_script.return_value.walk_revisions.return_value = revs

            from doratrack.db.migrate import get_pending_migrations

            assert await get_pending_migrations() == ["001", "002"]
