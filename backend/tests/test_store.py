"""
Tests for SqlJobRecordStore on a throwaway SQLite database.

Each test builds its own engine on a file under tmp_path, so WAL mode and
the foreign key pragma are exercised exactly as in production.
"""

import asyncio
from datetime import datetime, timezone

import pytest
from sqlalchemy import select

from reelpipe.db import init_database
from reelpipe.db.engine import create_engine, create_session_factory
from reelpipe.db.models import Job, PipelineRun
from reelpipe.db.store import SERVER_TIMESTAMP, JobNotFoundError, SqlJobRecordStore
from reelpipe.orchestrator.state import (
    ANALYZING,
    CANCELLED,
    COMPLETED,
    FINALIZING,
    GATHERING_VISUALS,
    PROCESSING,
    failed,
)


class StoreHarness:
    def __init__(self, tmp_path):
        self.engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'reelpipe-test.db'}")
        self.session_factory = create_session_factory(self.engine)
        self.store = SqlJobRecordStore(self.session_factory)

    async def __aenter__(self) -> SqlJobRecordStore:
        await init_database(bind=self.engine)
        return self.store

    async def __aexit__(self, *exc_info):
        await self.engine.dispose()


async def new_job(store: SqlJobRecordStore, user_id: str = "user-1"):
    script_id = await store.create_script("[HOOK] Mornings in the city.", user_id, title="Mornings")
    return await store.create_job(script_id, "voice-1", user_id, tone="casual")


@pytest.mark.asyncio
async def test_new_job_starts_processing(tmp_path):
    async with StoreHarness(tmp_path) as store:
        job = await new_job(store)

        assert job.status == PROCESSING
        assert job.progress == 0.0
        assert job.tone == "casual"
        assert await store.get_script_text(job.script_id) == "[HOOK] Mornings in the city."


@pytest.mark.asyncio
async def test_create_job_requires_existing_script(tmp_path):
    async with StoreHarness(tmp_path) as store:
        with pytest.raises(JobNotFoundError):
            await store.create_job("no-such-script", "voice-1", "user-1")


@pytest.mark.asyncio
async def test_create_job_rejects_unknown_tone(tmp_path):
    async with StoreHarness(tmp_path) as store:
        script_id = await store.create_script("text", "user-1")
        with pytest.raises(ValueError, match="Unsupported tone"):
            await store.create_job(script_id, "voice-1", "user-1", tone="whimsical")


@pytest.mark.asyncio
async def test_update_status_derives_progress(tmp_path):
    async with StoreHarness(tmp_path) as store:
        job = await new_job(store)

        assert await store.update_status(job.id, GATHERING_VISUALS, timestamp=SERVER_TIMESTAMP)

        record = await store.get_job(job.id)
        assert record.status == GATHERING_VISUALS
        assert record.progress == 0.5
        assert record.error is None


@pytest.mark.asyncio
async def test_update_status_accepts_local_timestamp(tmp_path):
    async with StoreHarness(tmp_path) as store:
        job = await new_job(store)
        stamp = datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)

        assert await store.update_status(job.id, ANALYZING, timestamp=stamp)

        record = await store.get_job(job.id)
        assert record.updated_at.replace(tzinfo=None) == stamp.replace(tzinfo=None)


@pytest.mark.asyncio
async def test_failure_reason_round_trips(tmp_path):
    async with StoreHarness(tmp_path) as store:
        job = await new_job(store)
        reason = "Visuals failed: No stock media found for ['harbor']"

        await store.update_status(job.id, failed(reason), timestamp=SERVER_TIMESTAMP)

        assert await store.get_status(job.id) == failed(reason)
        record = await store.get_job(job.id)
        assert record.error == reason
        assert record.progress == 0.0


@pytest.mark.asyncio
async def test_terminal_jobs_are_never_overwritten(tmp_path):
    async with StoreHarness(tmp_path) as store:
        job = await new_job(store)
        await store.update_status(job.id, failed("first"), timestamp=SERVER_TIMESTAMP)

        assert not await store.update_status(job.id, FINALIZING, timestamp=SERVER_TIMESTAMP)
        assert not await store.update_status(job.id, failed("second"), timestamp=SERVER_TIMESTAMP)
        assert await store.get_status(job.id) == failed("first")


@pytest.mark.asyncio
async def test_update_of_missing_job_is_refused(tmp_path):
    async with StoreHarness(tmp_path) as store:
        assert not await store.update_status("ghost", ANALYZING, timestamp=SERVER_TIMESTAMP)
        with pytest.raises(JobNotFoundError):
            await store.get_status("ghost")


@pytest.mark.asyncio
async def test_result_uris_only_with_completed(tmp_path):
    async with StoreHarness(tmp_path) as store:
        job = await new_job(store)

        with pytest.raises(ValueError):
            await store.update_status(job.id, COMPLETED, timestamp=SERVER_TIMESTAMP)
        with pytest.raises(ValueError):
            await store.update_status(
                job.id, FINALIZING, timestamp=SERVER_TIMESTAMP, video_uri="https://cdn.test/v.mp4",
            )

        assert await store.update_status(
            job.id, COMPLETED, timestamp=SERVER_TIMESTAMP,
            video_uri="https://cdn.test/v.mp4", thumbnail_uri="https://cdn.test/t.jpg",
        )
        record = await store.get_job(job.id)
        assert record.progress == 1.0
        assert record.video_uri == "https://cdn.test/v.mp4"
        assert record.thumbnail_uri == "https://cdn.test/t.jpg"


@pytest.mark.asyncio
async def test_cancel_only_affects_unfinished_jobs(tmp_path):
    async with StoreHarness(tmp_path) as store:
        running = await new_job(store)
        done = await new_job(store)
        await store.update_status(running.id, GATHERING_VISUALS, timestamp=SERVER_TIMESTAMP)
        await store.update_status(
            done.id, COMPLETED, timestamp=SERVER_TIMESTAMP, video_uri="https://cdn.test/v.mp4",
        )

        assert await store.cancel_job(running.id)
        assert not await store.cancel_job(done.id)

        record = await store.get_job(running.id)
        assert record.status == CANCELLED
        assert record.progress == 0.0
        assert await store.get_status(done.id) == COMPLETED


@pytest.mark.asyncio
async def test_claim_job_succeeds_exactly_once(tmp_path):
    async with StoreHarness(tmp_path) as store:
        job = await new_job(store)

        assert await store.list_unclaimed() == [job.id]
        claims = await asyncio.gather(*[store.claim_job(job.id) for _ in range(5)])

        assert claims.count(True) == 1
        assert await store.list_unclaimed() == []


@pytest.mark.asyncio
async def test_record_run_persists_step_log(tmp_path):
    async with StoreHarness(tmp_path) as store:
        job = await new_job(store)
        now = datetime.now(timezone.utc)

        await store.record_run(
            job.id,
            started_at=now,
            completed_at=now,
            total_duration_seconds=12.5,
            outcome="completed",
            log={"analyze": 1.5, "voiceover": 3.0},
        )

        async with store._session_factory() as session:
            run = (await session.execute(select(PipelineRun).where(PipelineRun.job_id == job.id))).scalar_one()
        assert run.outcome == "completed"
        assert run.log == {"analyze": 1.5, "voiceover": 3.0}


@pytest.mark.asyncio
async def test_list_jobs_filters_by_user(tmp_path):
    async with StoreHarness(tmp_path) as store:
        mine = await new_job(store, user_id="alice")
        await new_job(store, user_id="bob")

        jobs = await store.list_jobs(user_id="alice")

        assert [job.id for job in jobs] == [mine.id]
        assert len(await store.list_jobs()) == 2


@pytest.mark.asyncio
async def test_status_column_holds_camel_case_discriminator(tmp_path):
    async with StoreHarness(tmp_path) as store:
        job = await new_job(store)
        await store.update_status(job.id, GATHERING_VISUALS, timestamp=SERVER_TIMESTAMP)

        async with store._session_factory() as session:
            raw = (await session.execute(select(Job.status).where(Job.id == job.id))).scalar_one()
        assert raw == "gatheringVisuals"
