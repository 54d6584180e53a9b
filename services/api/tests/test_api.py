from __future__ import annotations

import asyncio
import time
from contextlib import asynccontextmanager
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from duocast_contracts.podcast_job import Script, Segment, UsageCounters
from duocast_podcast.application.task_manager import TaskManager
from duocast_podcast.domain.models import PipelineResult, ProgressEvent, Stage
from duocast_podcast.infrastructure.config import Settings
from duocast_podcast.infrastructure.storage.fs_store import FileSystemJobStore, FileSystemObjectStorage
from duocast_api.main import create_app

API_KEY = "test-key"
AUTH = {"x-api-key": API_KEY}
BODY = {"input_text": "a long enough article about tides", "owner_id": "alice"}


class DummyPipeline:
    def __init__(self, hold: bool = False) -> None:
        self.hold = hold

    async def run(self, request, output_path: Path, on_progress) -> PipelineResult:
        await on_progress(ProgressEvent(Stage.SCRIPT, "writing", 0.05))
        if self.hold:
            await asyncio.Event().wait()
        output_path.write_bytes(b"audio")
        return PipelineResult(
            output_path=output_path,
            script=Script(title="Tides", segments=[Segment(speaker="Charon", text="hi")]),
            duration="0:01",
            size_bytes=5,
            usage=UsageCounters(),
        )


def _client(tmp_path: Path, *, hold: bool = False, max_concurrent: int = 5) -> TestClient:
    settings = Settings(data_dir=tmp_path, api_key=API_KEY, max_concurrent_jobs=max_concurrent)
    pipeline = DummyPipeline(hold=hold)

    @asynccontextmanager
    async def open_pipeline(request):
        yield pipeline

    manager = TaskManager(
        store=FileSystemJobStore(settings.jobs_dir),
        storage=FileSystemObjectStorage(settings.media_dir, base_url="http://testserver/media"),
        pipeline_factory=open_pipeline,
        max_concurrent=max_concurrent,
    )
    return TestClient(create_app(settings, manager=manager))


def _wait_for(client: TestClient, job_id: str, status: str) -> dict:
    for _ in range(200):
        body = client.get(f"/v1/podcasts/{job_id}", headers=AUTH).json()
        if body["status"] == status:
            return body
        time.sleep(0.01)
    raise AssertionError(f"job {job_id} never reached {status}: {body}")


def test_health_is_public(tmp_path: Path) -> None:
    with _client(tmp_path) as client:
        assert client.get("/health").json() == {"status": "ok"}


def test_api_key_required(tmp_path: Path) -> None:
    with _client(tmp_path) as client:
        assert client.post("/v1/podcasts", json=BODY).status_code == 401
        assert client.post("/v1/podcasts", json=BODY, headers={"x-api-key": "wrong"}).status_code == 401
        ok = client.post("/v1/podcasts", json=BODY, headers={"Authorization": f"Bearer {API_KEY}"})
        assert ok.status_code == 202


def test_submit_then_poll_until_complete(tmp_path: Path) -> None:
    with _client(tmp_path) as client:
        resp = client.post("/v1/podcasts", json=BODY, headers=AUTH)
        assert resp.status_code == 202
        job_id = resp.json()["job_id"]
        assert resp.json()["status"] == "submitted"

        job = _wait_for(client, job_id, "complete")
        assert job["progress_percent"] == 100
        assert job["title"] == "Tides"
        assert job["audio_url"] == f"http://testserver/media/audio/{job_id}.mp3"
        assert client.get(f"/media/audio/{job_id}.mp3").content == b"audio"


def test_invalid_requests_are_rejected(tmp_path: Path) -> None:
    with _client(tmp_path) as client:
        both = {"input_text": "x", "input_url": "https://x.test"}
        assert client.post("/v1/podcasts", json=both, headers=AUTH).status_code == 422
        bad_backend = {**BODY, "tts": {"backend": "nope"}}
        resp = client.post("/v1/podcasts", json=bad_backend, headers=AUTH)
        assert resp.status_code == 422
        assert "nope" in resp.json()["detail"]
        jobs = client.get("/v1/podcasts", headers=AUTH).json()
        assert jobs["items"] == []


def test_capacity_returns_429(tmp_path: Path) -> None:
    with _client(tmp_path, hold=True, max_concurrent=1) as client:
        first = client.post("/v1/podcasts", json=BODY, headers=AUTH)
        assert first.status_code == 202
        second = client.post("/v1/podcasts", json=BODY, headers=AUTH)
        assert second.status_code == 429
        assert second.headers["retry-after"] == "30"


def test_unknown_job_is_404(tmp_path: Path) -> None:
    with _client(tmp_path) as client:
        assert client.get("/v1/podcasts/doesnotexist", headers=AUTH).status_code == 404


def test_cancel_running_and_finished_jobs(tmp_path: Path) -> None:
    with _client(tmp_path, hold=True) as client:
        job_id = client.post("/v1/podcasts", json=BODY, headers=AUTH).json()["job_id"]
        resp = client.post(f"/v1/podcasts/{job_id}/cancel", headers=AUTH)
        assert resp.status_code == 200
        assert resp.json() == {"job_id": job_id, "cancelled": True}
        job = _wait_for(client, job_id, "failed")
        assert job["error"] == "cancelled by request"
        assert client.post(f"/v1/podcasts/{job_id}/cancel", headers=AUTH).status_code == 409


def test_list_pages_and_filters_by_owner(tmp_path: Path) -> None:
    with _client(tmp_path) as client:
        ids = []
        for owner in ("alice", "bob", "alice"):
            ids.append(client.post("/v1/podcasts", json={**BODY, "owner_id": owner}, headers=AUTH).json()["job_id"])
            time.sleep(0.005)
        for job_id in ids:
            _wait_for(client, job_id, "complete")

        page = client.get("/v1/podcasts", params={"limit": 2}, headers=AUTH).json()
        assert [j["job_id"] for j in page["items"]] == [ids[2], ids[1]]
        rest = client.get("/v1/podcasts", params={"limit": 2, "cursor": page["next_cursor"]}, headers=AUTH).json()
        assert [j["job_id"] for j in rest["items"]] == [ids[0]]
        assert rest["next_cursor"] is None

        alice = client.get("/v1/podcasts", params={"owner_id": "alice"}, headers=AUTH).json()
        assert [j["job_id"] for j in alice["items"]] == [ids[2], ids[0]]
        assert client.get("/v1/podcasts", params={"limit": 0}, headers=AUTH).status_code == 422


@pytest.mark.parametrize("key", ["script_backends", "tts_backends", "tts_models", "voices", "formats"])
def test_options_lists_choices(tmp_path: Path, key: str) -> None:
    with _client(tmp_path) as client:
        options = client.get("/v1/options", headers=AUTH).json()
        assert options[key]
        assert "gemini" in options["tts_backends"]
