"""HTTP routes for scripts and reel jobs."""

import logging
from datetime import datetime
from typing import Literal, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from pydantic import BaseModel, Field

from reelpipe.db import get_store
from reelpipe.db.store import JobNotFoundError, JobRecord, SqlJobRecordStore
from reelpipe.orchestrator.pipeline import StageOrchestrator
from reelpipe.orchestrator.state import PIPELINE_STATES, is_terminal, progress_for
from reelpipe.workers.job_watcher import build_orchestrator, run_job_background

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

_orchestrator: Optional[StageOrchestrator] = None


def store_dependency() -> SqlJobRecordStore:
    return get_store()


def orchestrator_dependency(store: SqlJobRecordStore = Depends(store_dependency)) -> StageOrchestrator:
    """Process-wide orchestrator, built on first use.

    Raises 503 when the external services are not configured.
    """
    global _orchestrator
    if _orchestrator is None:
        try:
            _orchestrator = build_orchestrator(store)
        except RuntimeError as e:
            raise HTTPException(status_code=503, detail=str(e))
    return _orchestrator


def current_orchestrator() -> Optional[StageOrchestrator]:
    """The orchestrator if one was built, for shutdown cleanup."""
    return _orchestrator


# ---------------------------------------------------------------------------
# Request / response models
# ---------------------------------------------------------------------------

class CreateScriptRequest(BaseModel):
    content: str = Field(min_length=1)
    user_id: str = Field(min_length=1)
    title: Optional[str] = None


class CreateScriptResponse(BaseModel):
    script_id: str


class CreateJobRequest(BaseModel):
    script_id: str
    voice_id: str = Field(min_length=1)
    user_id: str = Field(min_length=1)
    tone: Literal["professional", "casual", "dramatic"] = "professional"


class CreateJobResponse(BaseModel):
    job_id: str
    status: str
    status_url: str


class JobResponse(BaseModel):
    id: str
    script_id: str
    voice_id: str
    tone: str
    user_id: str
    status: str
    progress: float
    error: Optional[str] = None
    video_uri: Optional[str] = None
    thumbnail_uri: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, job: JobRecord) -> "JobResponse":
        return cls(
            id=job.id,
            script_id=job.script_id,
            voice_id=job.voice_id,
            tone=job.tone,
            user_id=job.user_id,
            status=job.status.kind.value,
            progress=job.progress,
            error=job.error,
            video_uri=job.video_uri,
            thumbnail_uri=job.thumbnail_uri,
            created_at=job.created_at,
            updated_at=job.updated_at,
        )


class StatusResponse(BaseModel):
    job_id: str
    status: str
    progress: float
    description: str
    error: Optional[str] = None
    video_uri: Optional[str] = None
    thumbnail_uri: Optional[str] = None


class CancelResponse(BaseModel):
    job_id: str
    status: str


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post("/scripts", status_code=201, response_model=CreateScriptResponse)
async def create_script(request: CreateScriptRequest, store: SqlJobRecordStore = Depends(store_dependency)):
    script_id = await store.create_script(request.content, request.user_id, title=request.title)
    logger.info(f"Created script {script_id} for user {request.user_id}")
    return CreateScriptResponse(script_id=script_id)


@router.post("/jobs", status_code=202, response_model=CreateJobResponse)
async def create_job(
    request: CreateJobRequest,
    background_tasks: BackgroundTasks,
    store: SqlJobRecordStore = Depends(store_dependency),
    orchestrator: StageOrchestrator = Depends(orchestrator_dependency),
):
    """Create a reel job and start its pipeline in the background.

    The job is claimed before the run is scheduled, so a concurrently
    running watcher never starts a second run for it.
    """
    try:
        job = await store.create_job(
            request.script_id, request.voice_id, request.user_id, tone=request.tone,
        )
    except JobNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    if await store.claim_job(job.id):
        background_tasks.add_task(run_job_background, orchestrator, job.id)
    logger.info(f"Created job {job.id} for script {request.script_id}")

    return CreateJobResponse(
        job_id=job.id,
        status=job.status.kind.value,
        status_url=f"/api/jobs/{job.id}/status",
    )


@router.get("/jobs", response_model=list[JobResponse])
async def list_jobs(
    user_id: Optional[str] = None,
    limit: int = 50,
    store: SqlJobRecordStore = Depends(store_dependency),
):
    jobs = await store.list_jobs(user_id=user_id, limit=max(1, min(limit, 200)))
    return [JobResponse.from_record(job) for job in jobs]


async def _load_job(store: SqlJobRecordStore, job_id: str) -> JobRecord:
    job = await store.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return job


@router.get("/jobs/{job_id}", response_model=JobResponse)
async def get_job(job_id: str, store: SqlJobRecordStore = Depends(store_dependency)):
    return JobResponse.from_record(await _load_job(store, job_id))


@router.get("/jobs/{job_id}/status", response_model=StatusResponse)
async def get_job_status(job_id: str, store: SqlJobRecordStore = Depends(store_dependency)):
    """Persisted status, derived progress and the failure reason if any."""
    job = await _load_job(store, job_id)
    return StatusResponse(
        job_id=job.id,
        status=job.status.kind.value,
        progress=progress_for(job.status),
        description=PIPELINE_STATES[job.status.kind],
        error=job.status.reason,
        video_uri=job.video_uri,
        thumbnail_uri=job.thumbnail_uri,
    )


@router.post("/jobs/{job_id}/cancel", response_model=CancelResponse)
async def cancel_job(
    job_id: str,
    user_id: Optional[str] = None,
    store: SqlJobRecordStore = Depends(store_dependency),
):
    """Cancel a job that has not finished.

    The running pipeline notices at its next stage boundary, stops and
    cleans up. Returns 409 if the job already reached a terminal status.
    """
    job = await _load_job(store, job_id)
    if user_id is not None and user_id != job.user_id:
        raise HTTPException(status_code=403, detail="Job belongs to another user")
    if is_terminal(job.status) or not await store.cancel_job(job_id):
        current = await store.get_status(job_id)
        raise HTTPException(
            status_code=409,
            detail=f"Job cannot be cancelled from status '{current.kind.value}'",
        )

    logger.info(f"Job {job_id} marked as cancelled")
    return CancelResponse(job_id=job_id, status="cancelled")
