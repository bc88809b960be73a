"""Database persistence layer on SQLAlchemy 2.x async ORM."""

from doratrack.db.models import (
    Base,
    CommitRecord,
    DeploymentRecord,
    IncidentRecord,
    LeadTimeRecord,
    SyncWatermarkRecord,
)
from doratrack.db.repository import Repository
from doratrack.db.session import create_async_engine, dispose_engine, get_session_factory

__all__ = [
    "Base",
    "CommitRecord",
    "DeploymentRecord",
    "IncidentRecord",
    "LeadTimeRecord",
    "Repository",
    "SyncWatermarkRecord",
    "create_async_engine",
    "dispose_engine",
    "get_session_factory",
]
