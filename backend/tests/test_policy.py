"""Tests for failure classification, retries and the status-write fallback."""

import asyncio
import subprocess
from datetime import datetime

import httpx
import pytest

from conftest import InMemoryJobRecordStore
from reelpipe.db.store import SERVER_TIMESTAMP
from reelpipe.orchestrator.policy import (
    ErrorKind,
    ErrorPolicy,
    InvalidInputError,
    ServiceError,
    StatusWriteError,
    TransientServiceError,
    classify,
    write_status,
)
from reelpipe.orchestrator.state import ANALYZING, CANCELLED, COMPLETED, StatusKind, failed


def http_error(code: int) -> httpx.HTTPStatusError:
    request = httpx.Request("GET", "https://api.test/resource")
    response = httpx.Response(code, request=request)
    return httpx.HTTPStatusError(f"HTTP {code}", request=request, response=response)


@pytest.mark.parametrize("exc, kind", [
    (InvalidInputError("bad timeline"), ErrorKind.INVALID_INPUT),
    (TransientServiceError("busy"), ErrorKind.TRANSIENT),
    (http_error(429), ErrorKind.TRANSIENT),
    (http_error(503), ErrorKind.TRANSIENT),
    (http_error(404), ErrorKind.FATAL),
    (http_error(401), ErrorKind.FATAL),
    (httpx.ConnectError("refused"), ErrorKind.TRANSIENT),
    (httpx.ReadTimeout("slow"), ErrorKind.TRANSIENT),
    (asyncio.TimeoutError(), ErrorKind.TRANSIENT),
    (ConnectionResetError(), ErrorKind.TRANSIENT),
    (subprocess.CalledProcessError(1, ["ffmpeg"]), ErrorKind.FATAL),
    (ServiceError("no media"), ErrorKind.FATAL),
    (KeyError("scenes"), ErrorKind.FATAL),
])
def test_classify(exc, kind):
    assert classify(exc) is kind


class Flaky:
    """Async callable failing with the given errors before succeeding."""

    def __init__(self, *errors):
        self.errors = list(errors)
        self.calls = 0

    async def __call__(self, value):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return value


@pytest.mark.asyncio
async def test_transient_failures_are_retried(policy):
    fn = Flaky(http_error(503), httpx.ConnectError("reset"))

    assert await policy.call("Script analysis", fn, "ok") == "ok"
    assert fn.calls == 3


@pytest.mark.asyncio
async def test_non_transient_failure_is_raised_immediately(policy):
    fn = Flaky(ServiceError("rejected"))

    with pytest.raises(ServiceError, match="rejected"):
        await policy.call("Video upload", fn, "ok")
    assert fn.calls == 1


@pytest.mark.asyncio
async def test_last_transient_error_is_reraised_after_max_attempts(policy):
    fn = Flaky(*[TransientServiceError(f"busy {i}") for i in range(5)])

    with pytest.raises(TransientServiceError, match="busy 2"):
        await policy.call("Voiceover synthesis", fn, "ok")
    assert fn.calls == 3


@pytest.mark.asyncio
async def test_slow_attempt_times_out_and_is_retried():
    calls = 0

    async def slow_then_fast():
        nonlocal calls
        calls += 1
        if calls == 1:
            await asyncio.sleep(5)
        return "done"

    policy = ErrorPolicy(max_attempts=2, base_delay=0, max_delay=0, call_timeout=0.05, jitter=0)
    assert await policy.call("Thumbnail extraction", slow_then_fast) == "done"
    assert calls == 2


def test_single_attempt_policy_is_allowed_but_zero_is_not():
    ErrorPolicy(max_attempts=1)
    with pytest.raises(ValueError):
        ErrorPolicy(max_attempts=0)


def test_failure_reasons(policy):
    assert policy.failure_reason("Analysis", InvalidInputError("Total duration 40.0s")) == "Total duration 40.0s"
    assert policy.failure_reason("Voiceover", TransientServiceError("busy")) == (
        "Voiceover failed after 3 attempts: busy"
    )
    assert policy.failure_reason("Assembly", RuntimeError()) == "Assembly failed: RuntimeError"
    assert len(policy.failure_reason("Finalize", ServiceError("x" * 2000))) == 500


# ---------------------------------------------------------------------------
# write_status
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_write_status_uses_server_timestamp_first(store):
    job = store.add_job()

    assert await write_status(store, job.id, ANALYZING) is True
    assert [ts for (_, _, ts) in store.write_attempts] == [SERVER_TIMESTAMP]


@pytest.mark.asyncio
async def test_write_status_retries_with_local_timestamp(store):
    job = store.add_job()
    store.failing_writes = 1

    assert await write_status(store, job.id, ANALYZING) is True

    timestamps = [ts for (_, _, ts) in store.write_attempts]
    assert timestamps[0] is SERVER_TIMESTAMP
    assert isinstance(timestamps[1], datetime)
    assert (await store.get_status(job.id)) == ANALYZING


@pytest.mark.asyncio
async def test_write_status_raises_when_both_attempts_fail(store):
    job = store.add_job()
    store.failing_writes = 2

    with pytest.raises(StatusWriteError) as exc_info:
        await write_status(store, job.id, failed("boom"))
    assert isinstance(exc_info.value.__cause__, ConnectionError)
    assert len(store.write_attempts) == 2


@pytest.mark.asyncio
async def test_write_status_reports_refusal_on_terminal_job():
    store = InMemoryJobRecordStore()
    job = store.add_job(status=CANCELLED)

    assert await write_status(store, job.id, ANALYZING) is False
    assert (await store.get_status(job.id)) == CANCELLED


@pytest.mark.asyncio
async def test_completed_write_carries_uris(store):
    job = store.add_job()

    await write_status(store, job.id, COMPLETED, video_uri="https://cdn.test/v.mp4", thumbnail_uri=None)

    record = await store.get_job(job.id)
    assert record.status.kind is StatusKind.COMPLETED
    assert record.video_uri == "https://cdn.test/v.mp4"
