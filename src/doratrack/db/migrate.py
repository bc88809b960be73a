"""Alembic driven from code for ``doratrack migrate``.

Every operation opens a short-lived NullPool engine, hands the sync
connection to Alembic through ``Config.attributes`` (``env.py`` picks it up)
and disposes the engine afterwards.
"""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any, TypeVar

import structlog
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import create_async_engine

from doratrack.config import settings

logger = structlog.get_logger()

MIGRATIONS_PATH = Path(__file__).resolve().parent / "migrations"

T = TypeVar("T")


def _alembic_config() -> Config:
    cfg = Config()
    cfg.set_main_option("script_location", str(MIGRATIONS_PATH))
    cfg.set_main_option("sqlalchemy.url", settings.database_url)
    return cfg


def _get_script_directory() -> ScriptDirectory:
    return ScriptDirectory.from_config(_alembic_config())


async def _on_connection(fn: Callable[[Connection], T], commit: bool = False) -> T:
    engine = create_async_engine(settings.database_url, poolclass=pool.NullPool)
    try:
        async with engine.connect() as conn:
            result: T = await conn.run_sync(fn)
            if commit:
                await conn.commit()
            return result
    finally:
        await engine.dispose()


async def _alembic(command_name: str, revision: str) -> None:
    from alembic import command  # type: ignore[attr-defined]

    cfg = _alembic_config()
    step: Callable[..., Any] = getattr(command, command_name)

    def _apply(connection: Connection) -> None:
        cfg.attributes["connection"] = connection
        step(cfg, revision)

    logger.info("migrate.start", command=command_name, revision=revision)
    await _on_connection(_apply, commit=True)
    logger.info("migrate.done", command=command_name, revision=revision)


async def run_upgrade(revision: str = "head") -> None:
    await _alembic("upgrade", revision)


async def run_downgrade(revision: str = "-1") -> None:
    """Roll back to *revision*; the default steps back once."""
    await _alembic("downgrade", revision)


async def get_current_revision() -> str | None:
    def _stamped(connection: Connection) -> str | None:
        return MigrationContext.configure(connection).get_current_revision()

    return await _on_connection(_stamped)


async def get_pending_migrations() -> list[str]:
    """Unapplied revisions, oldest first."""
    current = await get_current_revision()
    newer: list[str] = []
    for script in _get_script_directory().walk_revisions("head", "base"):
        if script.revision == current:
            break
        newer.append(script.revision)
    return newer[::-1]
