"""Process-wide async engine for the API server and CLI commands.

One engine per process: ``create_async_engine`` replaces it, ``dispose_engine``
drops it. The :class:`~doratrack.db.repository.Repository` receives the
session factory rather than the engine.
"""

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.ext.asyncio import create_async_engine as _sa_engine

_engine: AsyncEngine | None = None
_sessions: async_sessionmaker[AsyncSession] | None = None


def create_async_engine(database_url: str, pool_size: int = 20) -> AsyncEngine:
    global _engine, _sessions
    _engine = _sa_engine(database_url, pool_size=pool_size, max_overflow=10, pool_pre_ping=True)
    # ORM rows are converted to pydantic models after commit
    _sessions = async_sessionmaker(_engine, expire_on_commit=False)
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    if _sessions is None:
        raise RuntimeError("create_async_engine() has not been called")
    return _sessions


async def dispose_engine() -> None:
    global _engine, _sessions
    if _engine is not None:
        await _engine.dispose()
    _engine, _sessions = None, None
