"""SQLAlchemy 2.0 ORM models for the reel pipeline."""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import String, Text, JSON, Float, ForeignKey, Index, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _new_id() -> str:
    return uuid.uuid4().hex


class Base(DeclarativeBase):
    """Base class for all ORM models."""
    pass


class Script(Base):
    """Script text a client wants turned into a reel."""
    __tablename__ = "scripts"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(128), index=True)
    title: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    content: Mapped[str] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now())


class Job(Base):
    """One request to turn a script into a video.

    ``progress`` and ``error`` are written only together with ``status``
    (see JobRecordStore.update_status); ``video_uri`` is set only on the
    write that marks the job completed.
    """
    __tablename__ = "jobs"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    script_id: Mapped[str] = mapped_column(ForeignKey("scripts.id"), index=True)
    voice_id: Mapped[str] = mapped_column(String(128))
    tone: Mapped[str] = mapped_column(String(20), default="professional")
    user_id: Mapped[str] = mapped_column(String(128), index=True)
    status: Mapped[str] = mapped_column(String(32), default="processing")
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    progress: Mapped[float] = mapped_column(Float, default=0.0)
    video_uri: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    thumbnail_uri: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    claimed_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(server_default=func.now())

    __table_args__ = (
        Index("ix_jobs_status_claimed", "status", "claimed_at"),
    )


class PipelineRun(Base):
    """Timing metadata for one orchestrator run of a job."""
    __tablename__ = "pipeline_runs"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    job_id: Mapped[str] = mapped_column(ForeignKey("jobs.id"), index=True)
    started_at: Mapped[datetime] = mapped_column()
    completed_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    total_duration_seconds: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    outcome: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    log: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
