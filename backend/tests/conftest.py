"""
Shared fixtures for the reelpipe test suite.

Everything here runs offline: the job store is in memory, collaborators
are fakes and downloads go through an httpx MockTransport.
"""

import itertools
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

import httpx
import pytest

from reelpipe.db.store import JobNotFoundError, JobRecord, JobRecordStore, check_result_uris
from reelpipe.orchestrator.pipeline import StageOrchestrator
from reelpipe.orchestrator.policy import ErrorPolicy, ServiceError
from reelpipe.orchestrator.state import (
    CANCELLED,
    PROCESSING,
    Status,
    StatusKind,
    is_terminal,
    progress_for,
)
from reelpipe.schemas.captions import CaptionSegment
from reelpipe.schemas.timeline import SceneTimeline, TimelineScene, VisualType
from reelpipe.services import PipelineServices
from reelpipe.services.base import (
    MediaEncoder,
    MediaResult,
    MediaSearch,
    MusicSearch,
    ObjectStorage,
    ScriptAnalyzer,
    SpeechSynthesizer,
    Transcriber,
)
from reelpipe.services.captions import spread_words
from reelpipe.services.temp_files import TempResourceManager


SCRIPT_TEXT = (
    "[HOOK] Most people never see the city wake up.\n"
    "[BODY] At five a.m. the bakeries open and the first trains roll in.\n"
    "[CTA] Follow for more early mornings."
)


def make_timeline(durations=(5, 5, 5, 5, 5, 5), gaps=None, **overrides) -> SceneTimeline:
    """Contiguous timeline; gaps maps a 0-based scene index to extra seconds before it."""
    gaps = gaps or {}
    scenes = []
    start = 0.0
    for i, duration in enumerate(durations):
        start += gaps.get(i, 0.0)
        scenes.append(TimelineScene(
            start_time=start,
            duration=duration,
            description=f"Scene {i + 1}",
            keywords=[f"city morning {i % 3}", "sunrise"],
            visual_type=VisualType.STATIC_IMAGE if i % 2 else VisualType.B_ROLL,
        ))
        start += duration
    values = {"main_topic": "city mornings", "mood": "calm", "keywords": ["city"], "scenes": scenes}
    values.update(overrides)
    return SceneTimeline(**values)


# ---------------------------------------------------------------------------
# In-memory job store
# ---------------------------------------------------------------------------

class InMemoryJobRecordStore(JobRecordStore):
    """JobRecordStore keeping jobs in a dict, with hooks for failure injection.

    Attributes:
        history: Statuses applied per job, in order.
        write_attempts: Every update_status call as (job_id, status, timestamp).
        failing_writes: Number of upcoming update_status calls that raise.
        failing_kinds: Status kinds whose writes always raise.
    """

    def __init__(self):
        self.jobs: dict[str, JobRecord] = {}
        self.scripts: dict[str, str] = {}
        self.claimed: set[str] = set()
        self.history: dict[str, list[Status]] = {}
        self.write_attempts: list[tuple] = []
        self.runs: list[dict] = []
        self.failing_writes = 0
        self.failing_kinds: set[StatusKind] = set()
        self._ids = itertools.count(1)

    def add_job(self, job_id: Optional[str] = None, script_text: str = SCRIPT_TEXT,
                status: Status = PROCESSING, user_id: str = "user-1", tone: str = "professional") -> JobRecord:
        job_id = job_id or f"job-{next(self._ids)}"
        script_id = f"script-{job_id}"
        self.scripts[script_id] = script_text
        job = JobRecord(
            id=job_id,
            script_id=script_id,
            voice_id="voice-1",
            tone=tone,
            user_id=user_id,
            status=status,
            progress=progress_for(status),
            error=status.reason,
        )
        self.jobs[job_id] = job
        self.history[job_id] = []
        return job

    def force_status(self, job_id: str, status: Status) -> None:
        """Write a status the way an external actor would, bypassing the guard."""
        self.jobs[job_id] = self.jobs[job_id].model_copy(update={
            "status": status,
            "progress": progress_for(status),
            "error": status.reason,
        })

    def applied(self, job_id: str) -> list[StatusKind]:
        return [status.kind for status in self.history[job_id]]

    async def get_job(self, job_id: str) -> Optional[JobRecord]:
        return self.jobs.get(job_id)

    async def get_script_text(self, script_id: str) -> str:
        text = self.scripts.get(script_id)
        if not text:
            raise JobNotFoundError(f"Script {script_id} not found")
        return text

    async def update_status(self, job_id, status, *, timestamp, video_uri=None, thumbnail_uri=None) -> bool:
        self.write_attempts.append((job_id, status, timestamp))
        if self.failing_writes > 0:
            self.failing_writes -= 1
            raise ConnectionError("store unavailable")
        if status.kind in self.failing_kinds:
            raise ConnectionError(f"store rejected {status.kind.value}")
        check_result_uris(status, video_uri, thumbnail_uri)

        job = self.jobs.get(job_id)
        if job is None or is_terminal(job.status):
            return False
        updated_at = timestamp if isinstance(timestamp, datetime) else None
        self.jobs[job_id] = job.model_copy(update={
            "status": status,
            "progress": progress_for(status),
            "error": status.reason,
            "video_uri": video_uri,
            "thumbnail_uri": thumbnail_uri,
            "updated_at": updated_at,
        })
        self.history[job_id].append(status)
        return True

    async def record_run(self, job_id, *, started_at, completed_at, total_duration_seconds, outcome, log) -> None:
        self.runs.append({
            "job_id": job_id,
            "started_at": started_at,
            "completed_at": completed_at,
            "total_duration_seconds": total_duration_seconds,
            "outcome": outcome,
            "log": log,
        })

    # Management operations used by the API routes

    async def create_script(self, content: str, user_id: str, title: Optional[str] = None) -> str:
        script_id = f"script-{next(self._ids)}"
        self.scripts[script_id] = content
        return script_id

    async def create_job(self, script_id, voice_id, user_id, tone="professional", job_id=None) -> JobRecord:
        if script_id not in self.scripts:
            raise JobNotFoundError(f"Script {script_id} not found")
        job_id = job_id or f"job-{next(self._ids)}"
        job = JobRecord(
            id=job_id, script_id=script_id, voice_id=voice_id, tone=tone,
            user_id=user_id, status=PROCESSING, progress=0.0,
        )
        self.jobs[job_id] = job
        self.history[job_id] = []
        return job

    async def claim_job(self, job_id: str) -> bool:
        if job_id in self.claimed or job_id not in self.jobs:
            return False
        self.claimed.add(job_id)
        return True

    async def list_unclaimed(self, limit: int = 10) -> list[str]:
        return [
            job_id for job_id, job in self.jobs.items()
            if job_id not in self.claimed and job.status.kind is StatusKind.PROCESSING
        ][:limit]

    async def cancel_job(self, job_id: str) -> bool:
        job = self.jobs.get(job_id)
        if job is None or is_terminal(job.status):
            return False
        self.force_status(job_id, CANCELLED)
        return True

    async def list_jobs(self, user_id: Optional[str] = None, limit: int = 50) -> list[JobRecord]:
        jobs = [job for job in self.jobs.values() if user_id is None or job.user_id == user_id]
        return jobs[:limit]


# ---------------------------------------------------------------------------
# Fake collaborators
# ---------------------------------------------------------------------------

class FakeAnalyzer(ScriptAnalyzer):
    def __init__(self, timeline: Optional[SceneTimeline] = None, error: Optional[Exception] = None):
        self.timeline = timeline or make_timeline()
        self.error = error
        self.calls = 0

    async def analyze(self, script_text, *, tone="professional"):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.timeline


class FakeSynthesizer(SpeechSynthesizer):
    """Raises the queued errors first, then returns an audio URL."""

    def __init__(self, errors=(), always: Optional[Exception] = None):
        self.errors = list(errors)
        self.always = always
        self.calls = 0

    async def synthesize(self, script_text, voice_id, *, tone="professional"):
        self.calls += 1
        if self.always is not None:
            raise self.always
        if self.errors:
            raise self.errors.pop(0)
        return "https://tts.test/audio/narration.mp3"


class FakeMediaSearch(MediaSearch):
    def __init__(self, on_search: Optional[Callable[[list[str]], None]] = None):
        self.on_search = on_search
        self.queries: list[tuple[list[str], VisualType]] = []

    async def search(self, keywords, visual_type):
        self.queries.append((keywords, visual_type))
        if self.on_search is not None:
            self.on_search(keywords)
        slug = "-".join(kw.replace(" ", "_") for kw in keywords)
        if visual_type in (VisualType.B_ROLL, VisualType.TALKING_HEAD):
            return MediaResult(url=f"https://media.test/{slug}.mp4", kind="video", width=1080, height=1920, source="fake")
        return MediaResult(url=f"https://media.test/{slug}.jpg", kind="image", width=1080, height=1920, source="fake")


class FakeMusicSearch(MusicSearch):
    def __init__(self, error: Optional[Exception] = None):
        self.error = error

    async def find_track(self, tone, mood):
        if self.error is not None:
            raise self.error
        return "https://music.test/track.mp3"


class FakeTranscriber(Transcriber):
    def __init__(self, error: Optional[Exception] = None):
        self.error = error
        self.transcribed: list[Path] = []

    async def transcribe(self, audio_path):
        self.transcribed.append(Path(audio_path))
        if self.error is not None:
            raise self.error
        text = "Most people never see the city wake up."
        return [CaptionSegment(text=text, start=0.0, end=3.0, words=spread_words(text, 0.0, 3.0))]


class FakeEncoder(MediaEncoder):
    def __init__(self, duration: float = 30.0, assemble_error: Optional[Exception] = None):
        self.duration = duration
        self.assemble_error = assemble_error
        self.assembled: list[dict] = []

    async def probe_duration(self, path):
        return self.duration

    async def assemble(self, audio_path, scene_paths, scenes, output_path, *, music_path=None, subtitles_path=None):
        # Leave a partial file behind so cleanup can be checked on failure
        Path(output_path).write_bytes(b"partial")
        if self.assemble_error is not None:
            raise self.assemble_error
        self.assembled.append({
            "audio_path": audio_path,
            "scene_paths": list(scene_paths),
            "scenes": list(scenes),
            "music_path": music_path,
            "subtitles_path": subtitles_path,
            "captions": Path(subtitles_path).read_text() if subtitles_path else None,
        })
        Path(output_path).write_bytes(b"video")
        return output_path

    async def extract_thumbnail(self, video_path, output_path):
        Path(output_path).write_bytes(b"jpeg")
        return output_path


class FakeStorage(ObjectStorage):
    def __init__(self):
        self.uploads: list[tuple[str, str]] = []

    async def upload(self, local_path, destination, content_type):
        if not Path(local_path).exists():
            raise ServiceError(f"missing upload source {local_path}")
        self.uploads.append((destination, content_type))
        return f"https://cdn.test/{destination}"


def media_handler(request: httpx.Request) -> httpx.Response:
    if "missing" in request.url.path:
        return httpx.Response(404, request=request)
    return httpx.Response(200, content=b"media-bytes-" + request.url.path.encode(), request=request)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def store() -> InMemoryJobRecordStore:
    return InMemoryJobRecordStore()


@pytest.fixture
def policy() -> ErrorPolicy:
    return ErrorPolicy(max_attempts=3, base_delay=0, max_delay=0, call_timeout=5.0, jitter=0)


@pytest.fixture
def scratch_dir(tmp_path) -> Path:
    return tmp_path / "scratch"


@pytest.fixture
def temp_manager(scratch_dir) -> TempResourceManager:
    client = httpx.AsyncClient(transport=httpx.MockTransport(media_handler))
    return TempResourceManager(scratch_dir=scratch_dir, http_client=client)


@pytest.fixture
def services() -> PipelineServices:
    return PipelineServices(
        analyzer=FakeAnalyzer(),
        synthesizer=FakeSynthesizer(),
        media_search=FakeMediaSearch(),
        encoder=FakeEncoder(),
        storage=FakeStorage(),
        music=FakeMusicSearch(),
        transcriber=FakeTranscriber(),
    )


@pytest.fixture
def orchestrator(store, services, temp_manager, policy) -> StageOrchestrator:
    return StageOrchestrator(store=store, services=services, temp_manager=temp_manager, policy=policy)
