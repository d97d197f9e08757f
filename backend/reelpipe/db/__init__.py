"""
Database module for reelpipe.

Provides async SQLAlchemy engine with SQLite WAL mode,
session management, schema initialization and the job record store.
"""
import logging

from reelpipe.db.engine import async_session, engine, get_session, shutdown
from reelpipe.db.models import Base, Job, PipelineRun, Script
from reelpipe.db.store import (
    SERVER_TIMESTAMP,
    JobNotFoundError,
    JobRecord,
    JobRecordStore,
    SqlJobRecordStore,
)

logger = logging.getLogger(__name__)


async def init_database(bind=None):
    """Initialize database schema on first run."""
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database schema ready")


def get_store() -> SqlJobRecordStore:
    """Return a job record store bound to the default session factory."""
    return SqlJobRecordStore(async_session)


__all__ = [
    "Base",
    "Job",
    "PipelineRun",
    "Script",
    "engine",
    "async_session",
    "get_session",
    "shutdown",
    "init_database",
    "get_store",
    "SERVER_TIMESTAMP",
    "JobNotFoundError",
    "JobRecord",
    "JobRecordStore",
    "SqlJobRecordStore",
]
