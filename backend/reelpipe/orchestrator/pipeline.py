"""Stage orchestrator: drives one job from processing to a terminal status.

Coordinates the reel pipeline with:
- Status transitions persisted before each stage starts
- Cooperative cancellation, re-read from the store at every stage boundary
- Per-step timing recorded as a PipelineRun
- A single failure write, classified by the ErrorPolicy
- Unconditional release of the job's temp files, whatever the outcome
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, Optional, TypeVar

from reelpipe.db.store import JobNotFoundError, JobRecord, JobRecordStore
from reelpipe.orchestrator.policy import (
    ErrorKind,
    ErrorPolicy,
    StatusWriteError,
    classify,
    write_status,
)
from reelpipe.orchestrator.state import (
    ANALYZING,
    ASSEMBLING_VIDEO,
    COMPLETED,
    FINALIZING,
    GATHERING_VISUALS,
    GENERATING_VOICEOVER,
    PIPELINE_STATES,
    PROCESSING,
    Status,
    failed,
    is_terminal,
    next_status,
    precedes,
)
from reelpipe.pipeline.analysis import TimelineLimits, analyze_script
from reelpipe.pipeline.assembly import assemble_video
from reelpipe.pipeline.finalize import finalize_video
from reelpipe.pipeline.visuals import gather_visuals
from reelpipe.pipeline.voiceover import generate_voiceover
from reelpipe.services import PipelineServices
from reelpipe.services.temp_files import TempResourceManager, TempScope

logger = logging.getLogger(__name__)

T = TypeVar("T")

ProgressCallback = Callable[[Status], None]

# User-facing stage names used in failure reasons
STAGE_LABELS = {
    ANALYZING.kind: "Analysis",
    GENERATING_VOICEOVER.kind: "Voiceover",
    GATHERING_VISUALS.kind: "Visuals",
    ASSEMBLING_VIDEO.kind: "Assembly",
    FINALIZING.kind: "Finalize",
}


class PipelineStopped(Exception):
    """Raised when the job reached a terminal status outside this run."""

    def __init__(self, status: Status):
        super().__init__(f"Pipeline stopped: job is {status}")
        self.status = status


@dataclass
class _Run:
    """Per-run bookkeeping; one orchestrator may drive many jobs at once."""

    job: JobRecord
    scope: TempScope
    stage: Status
    persisted: Status
    step_log: Dict[str, float] = field(default_factory=dict)


class StageOrchestrator:
    """Runs the Analyze, Voiceover, Visuals, Assembly and Finalize stages for a job.

    Args:
        store: Authoritative job record store.
        services: External collaborators.
        temp_manager: Process-wide temp file registry.
        policy: Retry/timeout policy for collaborator calls.
        limits: Timeline acceptance windows for the Analyze stage.
        progress_callback: Optional hook called after each persisted transition.
    """

    def __init__(
        self,
        store: JobRecordStore,
        services: PipelineServices,
        temp_manager: TempResourceManager,
        policy: Optional[ErrorPolicy] = None,
        limits: Optional[TimelineLimits] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ):
        self.store = store
        self.services = services
        self.temp_manager = temp_manager
        self.policy = policy or ErrorPolicy()
        self.limits = limits or TimelineLimits()
        self.progress_callback = progress_callback

    async def run(self, job_id: str) -> Status:
        """Execute the pipeline for one job and return its final status.

        Stage failures never propagate: they end as a Failed status. Only
        task cancellation (and a missing job) escapes to the caller; the
        job's temp files are released in every case. Stage outputs are not
        persisted, so only a job still at processing is started; a job left
        mid-pipeline is returned as stored.

        Raises:
            JobNotFoundError: If the job does not exist.
        """
        job = await self.store.get_job(job_id)
        if job is None:
            raise JobNotFoundError(f"Job {job_id} not found")
        if is_terminal(job.status):
            logger.info(f"Job {job_id}: already {job.status}, nothing to run")
            return job.status
        if job.status != PROCESSING:
            logger.warning(f"Job {job_id}: already at {job.status}, refusing to restart from analysis")
            return job.status

        logger.info(f"Starting pipeline for job {job_id}, current status: {job.status}")
        run = _Run(job=job, scope=self.temp_manager.scope(job_id), stage=job.status, persisted=job.status)
        started_at = datetime.now(timezone.utc)
        pipeline_start = time.monotonic()
        outcome = job.status

        try:
            outcome = await self._execute(run)
            logger.info(f"Job {job_id}: pipeline finished as {outcome} in {time.monotonic() - pipeline_start:.2f}s")
        except PipelineStopped as stopped:
            outcome = stopped.status
            logger.info(f"Job {job_id}: pipeline stopped before {run.stage}; job is {outcome}")
        except Exception as e:
            outcome = await self._fail(run, e)
        finally:
            released = run.scope.release_all()
            logger.debug(f"Job {job_id}: released {released} temporary files")
            await self._record_run(run, started_at, time.monotonic() - pipeline_start, outcome)

        return outcome

    async def _execute(self, run: _Run) -> Status:
        job, scope, policy, services = run.job, run.scope, self.policy, self.services

        script_text = await self.store.get_script_text(job.script_id)

        await self._advance(run, ANALYZING)
        timeline = await self._step(
            run, "analyze",
            analyze_script(services.analyzer, policy, script_text, tone=job.tone, limits=self.limits),
        )

        await self._advance(run, GENERATING_VOICEOVER)
        voiceover = await self._step(
            run, "voiceover",
            generate_voiceover(
                services.synthesizer, services.encoder, policy, scope,
                script_text, job.voice_id, tone=job.tone, transcriber=services.transcriber,
            ),
        )

        await self._advance(run, GATHERING_VISUALS)
        visuals = await self._step(
            run, "visuals",
            gather_visuals(services, policy, scope, timeline, tone=job.tone),
        )

        await self._advance(run, ASSEMBLING_VIDEO)
        video_path = await self._step(
            run, "assembly",
            assemble_video(services.encoder, policy, scope, timeline, voiceover, visuals),
        )

        await self._advance(run, FINALIZING)
        result = await self._step(
            run, "finalize",
            finalize_video(
                services.encoder, services.storage, policy, scope, video_path,
                user_id=job.user_id, job_id=job.id,
            ),
        )

        applied = await write_status(
            self.store, job.id, COMPLETED,
            video_uri=result.video_uri,
            thumbnail_uri=result.thumbnail_uri,
        )
        if not applied:
            raise PipelineStopped(await self._observed_status(job.id, run.persisted))
        run.persisted = COMPLETED
        self._notify(COMPLETED)
        return COMPLETED

    async def _advance(self, run: _Run, status: Status) -> None:
        """Honor an external cancellation, then persist the next stage's status.

        Raises:
            PipelineStopped: If the job went terminal, or another run moved
                it past this one.
            RuntimeError: If status is not the successor of the last write.
        """
        if next_status(run.persisted) != status:
            raise RuntimeError(f"Illegal transition {run.persisted} -> {status} for job {run.job.id}")
        run.stage = status
        current = await self.store.get_status(run.job.id)
        if is_terminal(current) or precedes(run.persisted, current):
            raise PipelineStopped(current)

        if not await write_status(self.store, run.job.id, status):
            # Lost the race with an external terminal write (e.g. cancel)
            raise PipelineStopped(await self._observed_status(run.job.id, current))
        run.persisted = status
        logger.info(f"Job {run.job.id}: {PIPELINE_STATES[status.kind]}")
        self._notify(status)

    async def _step(self, run: _Run, name: str, stage: Awaitable[T]) -> T:
        step_start = time.monotonic()
        result = await stage
        run.step_log[name] = time.monotonic() - step_start
        logger.info(f"Job {run.job.id}: {name} step completed in {run.step_log[name]:.2f}s")
        return result

    async def _fail(self, run: _Run, exc: Exception) -> Status:
        """Classify an escaped stage error and persist exactly one Failed status."""
        job_id = run.job.id
        label = STAGE_LABELS.get(run.stage.kind, "Pipeline")
        kind = classify(exc)
        if kind is ErrorKind.FATAL:
            logger.exception(f"Job {job_id}: {label} stage crashed ({type(exc).__name__})")
        else:
            logger.error(f"Job {job_id}: {label} stage failed ({kind.value}): {exc}")

        status = failed(self.policy.failure_reason(label, exc))
        try:
            applied = await write_status(self.store, job_id, status)
        except StatusWriteError:
            logger.error(f"Job {job_id}: failure not persisted; job left as {run.persisted}")
            return run.persisted

        if not applied:
            return await self._observed_status(job_id, run.persisted)
        run.persisted = status
        self._notify(status)
        return status

    async def _observed_status(self, job_id: str, default: Status) -> Status:
        try:
            return await self.store.get_status(job_id)
        except Exception as e:
            logger.warning(f"Job {job_id}: could not re-read status: {e}")
            return default

    async def _record_run(self, run: _Run, started_at: datetime, total: float, outcome: Status) -> None:
        try:
            await self.store.record_run(
                run.job.id,
                started_at=started_at,
                completed_at=datetime.now(timezone.utc),
                total_duration_seconds=total,
                outcome=outcome.kind.value,
                log=dict(run.step_log),
            )
        except Exception as e:
            logger.warning(f"Job {run.job.id}: failed to record pipeline run: {e}")

    def _notify(self, status: Status) -> None:
        if self.progress_callback:
            self.progress_callback(status)
