"""Job triggering: start one orchestrator run per newly created job.

Two delivery paths share the same guarantee. The API claims a job right
after creating it and runs it as a background task; JobWatcher polls the
store for jobs nobody claimed (e.g. rows written by another process).
claim_job() is atomic, so a job is run exactly once whichever path wins.
"""

import asyncio
import logging
from typing import Optional

from reelpipe.config import settings
from reelpipe.db.store import SqlJobRecordStore
from reelpipe.orchestrator.pipeline import ProgressCallback, StageOrchestrator
from reelpipe.orchestrator.policy import ErrorPolicy
from reelpipe.pipeline.analysis import TimelineLimits
from reelpipe.services import PipelineServices, build_services
from reelpipe.services.temp_files import get_temp_manager

logger = logging.getLogger(__name__)


def build_orchestrator(
    store: SqlJobRecordStore,
    services: Optional[PipelineServices] = None,
    progress_callback: Optional[ProgressCallback] = None,
) -> StageOrchestrator:
    """Wire a StageOrchestrator from settings."""
    return StageOrchestrator(
        store=store,
        services=services or build_services(settings),
        temp_manager=get_temp_manager(),
        policy=ErrorPolicy.from_settings(settings.pipeline),
        limits=TimelineLimits.from_settings(settings.pipeline),
        progress_callback=progress_callback,
    )


async def run_job_background(orchestrator: StageOrchestrator, job_id: str) -> None:
    """Run a claimed job, logging anything that escapes the orchestrator.

    Args:
        orchestrator: Orchestrator to run the job with
        job_id: Id of a job this process has claimed
    """
    try:
        status = await orchestrator.run(job_id)
        logger.info(f"Job {job_id} finished: {status}")
    except Exception as e:
        logger.error(f"Job {job_id} run aborted: {e}", exc_info=True)


class JobWatcher:
    """Polls for unclaimed jobs and runs them with bounded concurrency."""

    def __init__(
        self,
        store: SqlJobRecordStore,
        orchestrator: StageOrchestrator,
        poll_interval: float = 5.0,
        max_concurrent: int = 2,
    ):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be >= 1")
        self.store = store
        self.orchestrator = orchestrator
        self.poll_interval = poll_interval
        self.max_concurrent = max_concurrent
        self._active: dict[str, asyncio.Task] = {}

    @property
    def active_jobs(self) -> list[str]:
        return list(self._active)

    async def poll_once(self) -> list[str]:
        """Claim as many waiting jobs as there are free slots and start them.

        Returns:
            Ids of the jobs started by this poll.
        """
        free = self.max_concurrent - len(self._active)
        if free <= 0:
            return []

        started = []
        for job_id in await self.store.list_unclaimed(limit=free):
            if not await self.store.claim_job(job_id):
                logger.debug(f"Job {job_id} was claimed elsewhere")
                continue
            task = asyncio.create_task(run_job_background(self.orchestrator, job_id), name=f"job-{job_id}")
            self._active[job_id] = task
            task.add_done_callback(lambda _t, jid=job_id: self._active.pop(jid, None))
            started.append(job_id)

        if started:
            logger.info(f"Started {len(started)} job(s): {', '.join(started)}")
        return started

    async def run(self, stop: Optional[asyncio.Event] = None) -> None:
        """Poll until stop is set, then wait for running jobs to finish."""
        stop = stop or asyncio.Event()
        logger.info(
            f"Watching for jobs every {self.poll_interval:g}s "
            f"(max {self.max_concurrent} concurrent)"
        )
        try:
            while not stop.is_set():
                try:
                    await self.poll_once()
                except Exception as e:
                    logger.error(f"Job poll failed: {e}", exc_info=True)
                try:
                    await asyncio.wait_for(stop.wait(), timeout=self.poll_interval)
                except asyncio.TimeoutError:
                    pass
        finally:
            await self.drain()

    async def drain(self) -> None:
        """Wait for every running job to reach its outcome."""
        if self._active:
            logger.info(f"Waiting for {len(self._active)} running job(s)")
            await asyncio.gather(*self._active.values(), return_exceptions=True)
