"""Tests for the HTTP routes, with the store and orchestrator overridden."""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from reelpipe.api.routes import orchestrator_dependency, router, store_dependency
from reelpipe.orchestrator.state import COMPLETED, GATHERING_VISUALS, StatusKind, failed


class RecordingOrchestrator:
    def __init__(self):
        self.runs: list[str] = []

    async def run(self, job_id):
        self.runs.append(job_id)
        return COMPLETED


@pytest.fixture
def runner() -> RecordingOrchestrator:
    return RecordingOrchestrator()


@pytest.fixture
def client(store, runner):
    app = FastAPI()
    app.include_router(router)
    app.dependency_overrides[store_dependency] = lambda: store
    app.dependency_overrides[orchestrator_dependency] = lambda: runner
    return TestClient(app)


def test_create_script_and_job_starts_a_run(client, store, runner):
    response = client.post("/api/scripts", json={"content": "[HOOK] Hi.", "user_id": "user-1"})
    assert response.status_code == 201
    script_id = response.json()["script_id"]

    response = client.post("/api/jobs", json={
        "script_id": script_id, "voice_id": "voice-1", "user_id": "user-1", "tone": "dramatic",
    })

    assert response.status_code == 202
    body = response.json()
    assert body["status"] == "processing"
    assert body["status_url"] == f"/api/jobs/{body['job_id']}/status"
    assert runner.runs == [body["job_id"]]
    assert body["job_id"] in store.claimed


def test_create_job_for_unknown_script_is_404(client, runner):
    response = client.post("/api/jobs", json={"script_id": "nope", "voice_id": "v", "user_id": "u"})
    assert response.status_code == 404
    assert runner.runs == []


def test_create_job_rejects_unknown_tone(client):
    response = client.post("/api/jobs", json={
        "script_id": "s", "voice_id": "v", "user_id": "u", "tone": "whimsical",
    })
    assert response.status_code == 422


def test_status_reports_progress_and_description(client, store):
    job = store.add_job("job-1")
    store.force_status(job.id, GATHERING_VISUALS)

    body = client.get("/api/jobs/job-1/status").json()

    assert body["status"] == "gatheringVisuals"
    assert body["progress"] == 0.5
    assert body["description"] == "Searching and downloading stock media"
    assert body["error"] is None


def test_status_of_failed_job_carries_reason(client, store):
    job = store.add_job("job-1")
    store.force_status(job.id, failed("Voiceover failed after 3 attempts: busy"))

    body = client.get("/api/jobs/job-1/status").json()

    assert body["status"] == "failed"
    assert body["progress"] == 0.0
    assert body["error"] == "Voiceover failed after 3 attempts: busy"


def test_unknown_job_is_404(client):
    assert client.get("/api/jobs/ghost").status_code == 404
    assert client.get("/api/jobs/ghost/status").status_code == 404


def test_list_jobs_by_user(client, store):
    store.add_job("job-1", user_id="alice")
    store.add_job("job-2", user_id="bob")

    body = client.get("/api/jobs", params={"user_id": "alice"}).json()

    assert [job["id"] for job in body] == ["job-1"]


def test_cancel_running_job(client, store):
    store.add_job("job-1")

    response = client.post("/api/jobs/job-1/cancel", params={"user_id": "user-1"})

    assert response.status_code == 200
    assert response.json() == {"job_id": "job-1", "status": "cancelled"}
    assert store.jobs["job-1"].status.kind is StatusKind.CANCELLED


def test_cancel_by_another_user_is_forbidden(client, store):
    store.add_job("job-1", user_id="alice")

    response = client.post("/api/jobs/job-1/cancel", params={"user_id": "mallory"})

    assert response.status_code == 403
    assert store.jobs["job-1"].status.kind is StatusKind.PROCESSING


def test_cancel_finished_job_conflicts(client, store):
    store.add_job("job-1", status=COMPLETED)

    response = client.post("/api/jobs/job-1/cancel")

    assert response.status_code == 409
    assert "completed" in response.json()["detail"]
