"""Job record persistence used by the orchestrator.

JobRecordStore is the narrow interface a run depends on. SqlJobRecordStore
implements it on the async SQLAlchemy engine and adds the management
operations used by the API, CLI and job watcher.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional, Union

from pydantic import BaseModel
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from reelpipe.db.models import Job, PipelineRun, Script
from reelpipe.orchestrator.state import (
    CANCELLABLE_KINDS,
    PROCESSING,
    TERMINAL_KINDS,
    Status,
    StatusKind,
    from_record,
    to_record,
)

logger = logging.getLogger(__name__)


class _ServerTimestamp:
    """Sentinel asking the store to assign the update time itself."""

    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP = _ServerTimestamp()

Timestamp = Union[_ServerTimestamp, datetime]

REEL_TONES = ("professional", "casual", "dramatic")


class JobNotFoundError(LookupError):
    """Raised when a job or its script does not exist."""


class JobRecord(BaseModel):
    """Snapshot of a persisted job as seen by a client."""

    id: str
    script_id: str
    voice_id: str
    tone: str
    user_id: str
    status: Status
    progress: float
    error: Optional[str] = None
    video_uri: Optional[str] = None
    thumbnail_uri: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Job) -> "JobRecord":
        return cls(
            id=row.id,
            script_id=row.script_id,
            voice_id=row.voice_id,
            tone=row.tone,
            user_id=row.user_id,
            status=from_record({"status": row.status, "error": row.error}),
            progress=row.progress,
            error=row.error,
            video_uri=row.video_uri,
            thumbnail_uri=row.thumbnail_uri,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )


def check_result_uris(status: Status, video_uri: Optional[str], thumbnail_uri: Optional[str]) -> None:
    """Enforce that result URIs accompany exactly the completed status."""
    if status.kind is StatusKind.COMPLETED:
        if not video_uri:
            raise ValueError("completed status requires a video URI")
    elif video_uri is not None or thumbnail_uri is not None:
        raise ValueError(f"result URIs can only be written with the completed status, not '{status}'")


class JobRecordStore(ABC):
    """Read/write access to a job's persisted status."""

    @abstractmethod
    async def get_job(self, job_id: str) -> Optional[JobRecord]:
        """Load a job snapshot, or None if it does not exist."""
        ...

    async def get_status(self, job_id: str) -> Status:
        """Re-read the authoritative status of a job.

        Raises:
            JobNotFoundError: If the job does not exist.
        """
        job = await self.get_job(job_id)
        if job is None:
            raise JobNotFoundError(f"Job {job_id} not found")
        return job.status

    @abstractmethod
    async def get_script_text(self, script_id: str) -> str:
        """Return the content of a script.

        Raises:
            JobNotFoundError: If the script does not exist or is empty.
        """
        ...

    @abstractmethod
    async def update_status(
        self,
        job_id: str,
        status: Status,
        *,
        timestamp: Timestamp,
        video_uri: Optional[str] = None,
        thumbnail_uri: Optional[str] = None,
    ) -> bool:
        """Persist status, derived progress and error in one write.

        Never modifies a job that is already terminal.

        Returns:
            True if the write was applied, False if the job is terminal
            or missing.
        """
        ...

    @abstractmethod
    async def record_run(
        self,
        job_id: str,
        *,
        started_at: datetime,
        completed_at: datetime,
        total_duration_seconds: float,
        outcome: str,
        log: dict,
    ) -> None:
        """Store timing metadata for one orchestrator run."""
        ...


class SqlJobRecordStore(JobRecordStore):
    """JobRecordStore backed by the async SQLAlchemy session factory."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get_job(self, job_id: str) -> Optional[JobRecord]:
        async with self._session_factory() as session:
            row = await session.get(Job, job_id)
            return JobRecord.from_row(row) if row is not None else None

    async def get_status(self, job_id: str) -> Status:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Job.status, Job.error).where(Job.id == job_id)
            )
            row = result.one_or_none()
        if row is None:
            raise JobNotFoundError(f"Job {job_id} not found")
        return from_record({"status": row.status, "error": row.error})

    async def get_script_text(self, script_id: str) -> str:
        async with self._session_factory() as session:
            script = await session.get(Script, script_id)
        if script is None:
            raise JobNotFoundError(f"Script {script_id} not found")
        if not script.content or not script.content.strip():
            raise JobNotFoundError(f"Script {script_id} has no content")
        return script.content

    async def update_status(
        self,
        job_id: str,
        status: Status,
        *,
        timestamp: Timestamp,
        video_uri: Optional[str] = None,
        thumbnail_uri: Optional[str] = None,
    ) -> bool:
        check_result_uris(status, video_uri, thumbnail_uri)

        values = to_record(status)
        values["updated_at"] = func.now() if timestamp is SERVER_TIMESTAMP else timestamp
        if status.kind is StatusKind.COMPLETED:
            values["video_uri"] = video_uri
            values["thumbnail_uri"] = thumbnail_uri

        stmt = (
            update(Job)
            .where(Job.id == job_id)
            .where(Job.status.notin_([kind.value for kind in TERMINAL_KINDS]))
            .values(**values)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            await session.commit()

        applied = result.rowcount == 1
        if applied:
            logger.debug(f"Job {job_id}: status -> {status} (progress {values['progress']:.0%})")
        else:
            logger.info(f"Job {job_id}: status write '{status}' skipped, job is terminal or missing")
        return applied

    async def record_run(
        self,
        job_id: str,
        *,
        started_at: datetime,
        completed_at: datetime,
        total_duration_seconds: float,
        outcome: str,
        log: dict,
    ) -> None:
        async with self._session_factory() as session:
            session.add(PipelineRun(
                job_id=job_id,
                started_at=started_at,
                completed_at=completed_at,
                total_duration_seconds=total_duration_seconds,
                outcome=outcome,
                log=log,
            ))
            await session.commit()

    # ------------------------------------------------------------------
    # Management operations (API / CLI / watcher)
    # ------------------------------------------------------------------

    async def create_script(self, content: str, user_id: str, title: Optional[str] = None) -> str:
        """Store a script and return its id."""
        async with self._session_factory() as session:
            script = Script(content=content, user_id=user_id, title=title)
            session.add(script)
            await session.commit()
            return script.id

    async def create_job(
        self,
        script_id: str,
        voice_id: str,
        user_id: str,
        tone: str = "professional",
        job_id: Optional[str] = None,
    ) -> JobRecord:
        """Create a job record in the initial processing status."""
        if tone not in REEL_TONES:
            raise ValueError(f"Unsupported tone '{tone}'. Supported: {list(REEL_TONES)}")

        async with self._session_factory() as session:
            if await session.get(Script, script_id) is None:
                raise JobNotFoundError(f"Script {script_id} not found")

            job = Job(
                script_id=script_id,
                voice_id=voice_id,
                user_id=user_id,
                tone=tone,
                **to_record(PROCESSING),
            )
            if job_id:
                job.id = job_id
            session.add(job)
            await session.commit()
            await session.refresh(job)
            return JobRecord.from_row(job)

    async def cancel_job(self, job_id: str) -> bool:
        """Mark a job cancelled if it has not reached a terminal status.

        The running orchestrator observes this at its next stage boundary.
        """
        stmt = (
            update(Job)
            .where(Job.id == job_id)
            .where(Job.status.in_([kind.value for kind in CANCELLABLE_KINDS]))
            .values(
                status=StatusKind.CANCELLED.value,
                error=None,
                progress=0.0,
                updated_at=func.now(),
            )
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            await session.commit()
        return result.rowcount == 1

    async def claim_job(self, job_id: str) -> bool:
        """Atomically claim a new job so exactly one run starts for it."""
        stmt = (
            update(Job)
            .where(Job.id == job_id)
            .where(Job.claimed_at.is_(None))
            .where(Job.status == StatusKind.PROCESSING.value)
            .values(claimed_at=func.now())
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            await session.commit()
        return result.rowcount == 1

    async def list_unclaimed(self, limit: int = 10) -> list[str]:
        """Return ids of new jobs no run has claimed yet, oldest first."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(Job.id)
                .where(Job.status == StatusKind.PROCESSING.value)
                .where(Job.claimed_at.is_(None))
                .order_by(Job.created_at)
                .limit(limit)
            )
            return list(result.scalars().all())

    async def list_jobs(self, user_id: Optional[str] = None, limit: int = 50) -> list[JobRecord]:
        async with self._session_factory() as session:
            stmt = select(Job).order_by(Job.created_at.desc()).limit(limit)
            if user_id is not None:
                stmt = stmt.where(Job.user_id == user_id)
            result = await session.execute(stmt)
            return [JobRecord.from_row(row) for row in result.scalars().all()]
