from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from dreamcut.analyzers import AnalyzerRegistry
from dreamcut.config import DreamcutConfig
from dreamcut.function_tools.production_planner import entrypoint
from dreamcut.job_queue import InMemoryJobStore, JobQueue
from dreamcut.pipeline import BriefPipeline
from dreamcut.retry import BackoffPolicy

DESCRIPTION = "blue logo on white background"


@pytest.fixture
def queue() -> JobQueue:
    return JobQueue(InMemoryJobStore(), backoff=BackoffPolicy.none())


@pytest.fixture
def client(queue: JobQueue) -> TestClient:
    config = DreamcutConfig.from_env({})
    pipeline = BriefPipeline.from_config(config, AnalyzerRegistry.fixtures())
    return TestClient(entrypoint.create_app(config, queue=queue, pipeline=pipeline))


def test_health_endpoint():
    client = TestClient(entrypoint.app)
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json().get("status") == "ok"


def test_analyze_returns_brief_with_descriptions(client: TestClient):
    payload = {
        "query": "launch teaser for our brand",
        "intent": "video",
        "assets": [
            {"id": "a1", "url": "https://cdn.example.com/logo.png", "mediaType": "image", "metadata": {"description": DESCRIPTION}},
            {"id": "a2", "url": "https://cdn.example.com/team.png", "mediaType": "image"},
        ],
        "preferences": {"aspectRatio": "16:9"},
    }
    r = client.post("/analyze", json=payload)
    assert r.status_code == 200
    data = r.json()
    assert data["status"] == "success"
    brief = data["brief"]
    assert brief["shape"] == "brief.v2"
    assert brief["briefId"].startswith("brief-")
    options = brief["plan"]["creativeOptions"]
    assert options and all(o["assetUsage"]["assetDescriptions"] == {"a1": DESCRIPTION} for o in options)
    assert data["degradedAssetIds"] == []


def test_analyze_reports_every_validation_issue(client: TestClient):
    r = client.post("/analyze", json={"query": " ", "intent": "podcast", "assets": [{"url": ""}]})
    assert r.status_code == 400
    fields = [issue["field"] for issue in r.json()["detail"]["errors"]]
    assert fields[:2] == ["query", "intent"]
    assert "assets[0].url" in fields


def test_malformed_body_is_a_400(client: TestClient):
    r = client.post("/analyze", json={"assets": []})
    assert r.status_code == 400


def test_manifest_submission_enqueues_jobs(client: TestClient, queue: JobQueue, manifest_factory):
    r = client.post("/manifests", params={"brief_id": "brief-77"}, json=manifest_factory())
    assert r.status_code == 200
    data = r.json()
    assert data["status"] == "accepted"
    assert data["briefId"] == "brief-77"
    assert len(data["jobIds"]) == 3

    pending = client.get("/jobs/pending").json()["jobs"]
    assert [job["type"] for job in pending] == ["final-assembly", "tts", "image-generation"]
    assert [job["id"] for job in client.get("/briefs/brief-77/jobs").json()["jobs"]] == data["jobIds"]


def test_rejected_manifest_lists_errors(client: TestClient, manifest_factory):
    r = client.post("/manifests", json=manifest_factory(scenes=[]))
    assert r.status_code == 400
    errors = r.json()["detail"]["errors"]
    assert any(error["field"] == "scenes" for error in errors)


def test_job_lifecycle_endpoints(client: TestClient, queue: JobQueue, manifest_factory):
    job_ids = client.post("/manifests", json=manifest_factory()).json()["jobIds"]
    claimed = queue.claim_next("w1")
    assert [job["id"] for job in client.get("/jobs/active").json()["jobs"]] == [claimed.id]

    detail = client.get(f"/jobs/{claimed.id}").json()
    assert detail["status"] == "processing"
    assert detail["attempts"] == 1

    r = client.post(f"/jobs/{job_ids[0]}/cancel")
    assert r.status_code == 200
    assert r.json()["status"] == "cancelled"
    assert client.post(f"/jobs/{job_ids[0]}/cancel").json()["cancelled"] is False

    stats = client.get("/jobs/stats").json()["stats"]
    assert sum(entry["count"] for entry in stats) == 3


def test_unknown_job_is_404(client: TestClient):
    assert client.get("/jobs/nope").status_code == 404
    assert client.post("/jobs/nope/cancel").status_code == 404


def test_cancel_idle_session(client: TestClient):
    r = client.post("/sessions/chat-1/cancel")
    assert r.status_code == 200
    assert r.json() == {"sessionId": "chat-1", "cancelled": False}


def test_brief_progress_endpoint(client: TestClient, queue: JobQueue, manifest_factory):
    client.post("/manifests", params={"brief_id": "brief-88"}, json=manifest_factory())
    job = queue.claim_next("w1")
    queue.complete(job, {"ok": True})

    r = client.get("/briefs/brief-88/progress")
    assert r.status_code == 200
    data = r.json()
    assert data["briefId"] == "brief-88"
    assert data["status"] == "processing"
    assert (data["completed"], data["total"]) == (1, 3)
    assert data["lastError"] is None

    assert client.get("/briefs/brief-unknown/progress").status_code == 404


def test_shutdown_closes_the_shared_analyzer_client(tmp_path):
    path = tmp_path / "analyzers.yaml"
    path.write_text("vision:\n  - name: primary\n    url: https://analyzer.test/vision\n", encoding="utf-8")
    config = DreamcutConfig.from_env({"DREAMCUT_ANALYZER_CONFIG": str(path)})
    app = entrypoint.create_app(config, queue=JobQueue(InMemoryJobStore()))
    shared = app.state.pipeline.fanout.registry.client
    with TestClient(app) as client:
        assert client.get("/health").status_code == 200
        assert not shared.is_closed
    assert shared.is_closed
