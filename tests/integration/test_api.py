"""Integration tests for the HTTP and WebSocket API.

The pipeline runs against fake backends and a temporary SQLite database;
batches run on the TestClient's event loop.
"""

import time

import pytest
from conftest import FakeCompletionBackend, FakeImageService, FakeMigrator, FakeTTSService
from fastapi.testclient import TestClient

import api.dependencies as dependencies
from api.dependencies import get_content_store, get_orchestrator, get_pipeline
from api.progress import attach_progress_listeners
from api.server import app
from services.batch_orchestrator import BatchOrchestrator
from services.item_pipeline import ItemPipeline
from services.text_generation_service import TextGenerationService

REQUEST = {
    "title": "Morning Peace",
    "theme": "peace",
    "scriptural_basis": "John 14:27",
    "category_id": "morning",
    "playlist_names": ["Calm"],
    "desired_positions": {"Calm": 1},
}


@pytest.fixture
def api(tmp_path, monkeypatch, pipeline_config):
    """TestClient plus the fake TTS so tests can steer failures."""
    monkeypatch.setenv("JOBS_DB_PATH", str(tmp_path / "jobs.db"))
    monkeypatch.setenv("CONTENT_DB_PATH", str(tmp_path / "content.db"))
    monkeypatch.setattr(dependencies, "_config", None)

    tts = FakeTTSService()
    built: dict = {}

    async def pipeline_override() -> ItemPipeline:
        if "pipeline" not in built:
            built["pipeline"] = ItemPipeline(
                config=pipeline_config,
                text_service=TextGenerationService(
                    FakeCompletionBackend(), list(pipeline_config.baseline_models)
                ),
                tts_service=tts,
                store=await get_content_store(),
                image_service=FakeImageService(),
                image_migrator=FakeMigrator(),
            )
        return built["pipeline"]

    async def orchestrator_override() -> BatchOrchestrator:
        if "orchestrator" not in built:
            built["orchestrator"] = attach_progress_listeners(
                BatchOrchestrator(await pipeline_override(), pipeline_config)
            )
        return built["orchestrator"]

    app.dependency_overrides[get_pipeline] = pipeline_override
    app.dependency_overrides[get_orchestrator] = orchestrator_override
    try:
        with TestClient(app) as client:
            yield client, tts
    finally:
        app.dependency_overrides.clear()


def wait_for_state(client: TestClient, job_id: str, states=("completed", "cancelled"), timeout=5.0) -> dict:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        progress = client.get(f"/api/batches/{job_id}").json()
        if progress["state"] in states:
            return progress
        time.sleep(0.02)
    raise AssertionError(f"batch {job_id} did not reach {states}")


@pytest.mark.integration
class TestGenerationApi:
    def test_health(self, api):
        client, _ = api
        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_voices(self, api):
        client, _ = api
        voices = client.get("/api/voices").json()
        assert {"voice_id": "7i7dgyCkKt4c16dLtwT3", "name": "David - Epic Trailer"} in voices

    def test_generate_single_item(self, api):
        client, tts = api
        response = client.post("/api/generate", json=REQUEST)

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "success"
        assert body["steps"]["playlist_link"]["status"] == "success"
        assert body["playlist_links"][0]["action"] == "inserted"
        assert len(tts.calls) == 1

    def test_generate_rejects_invalid_body(self, api):
        client, _ = api
        assert client.post("/api/generate", json={**REQUEST, "title": ""}).status_code == 422
        bad_position = {**REQUEST, "desired_positions": {"Calm": 0}}
        assert client.post("/api/generate", json=bad_position).status_code == 422

    def test_batch_runs_and_is_archived(self, api):
        client, _ = api
        response = client.post(
            "/api/batches", json={"requests": [REQUEST, {**REQUEST, "title": "Evening"}], "job_id": "b-1"}
        )
        assert response.status_code == 200
        assert response.json()["total"] == 2

        progress = wait_for_state(client, "b-1")
        assert progress["completed"] == 2
        assert [item["status"] for item in progress["per_item_step_status"]] == ["success", "success"]

        # The archive snapshot is written by a listener right after the state flips
        deadline = time.monotonic() + 5
        while True:
            listing = client.get("/api/batches").json()
            if listing["archived"] and listing["archived"][0]["status"] == "completed":
                break
            assert time.monotonic() < deadline
            time.sleep(0.02)
        assert [b["job_id"] for b in listing["active"]] == ["b-1"]
        (archived,) = listing["archived"]
        assert archived["id"] == "b-1"
        assert archived["status"] == "completed"
        assert archived["data"]["succeeded"] == 2

    def test_batch_validation_errors(self, api):
        client, _ = api
        assert client.post("/api/batches", json={"requests": []}).status_code == 400
        too_many = {"requests": [REQUEST] * 31}
        assert client.post("/api/batches", json=too_many).status_code == 400

    def test_unknown_batch(self, api):
        client, _ = api
        assert client.get("/api/batches/missing").status_code == 404
        assert client.post("/api/batches/missing/pause").status_code == 404

    def test_controls_on_finished_batch(self, api):
        client, _ = api
        client.post("/api/batches", json={"requests": [REQUEST], "job_id": "b-2"})
        wait_for_state(client, "b-2")

        assert client.post("/api/batches/b-2/pause").status_code == 409
        assert client.post("/api/batches/b-2/cancel").status_code == 200
        assert client.post("/api/batches/b-2/items/0/retry").status_code == 409
        assert client.post("/api/batches/b-2/items/5/retry").status_code == 404

    def test_discard_finished_batch(self, api):
        client, _ = api
        client.post("/api/batches", json={"requests": [REQUEST], "job_id": "b-5"})
        wait_for_state(client, "b-5")

        assert client.delete("/api/batches/b-5").status_code == 200
        assert client.delete("/api/batches/b-5").status_code == 404
        assert client.post("/api/batches/b-5/pause").status_code == 404
        listing = client.get("/api/batches").json()
        assert "b-5" not in [b["job_id"] for b in listing["active"]]

    def test_retry_failed_item(self, api):
        client, tts = api
        tts.fail_marker = "peace settle"
        client.post("/api/batches", json={"requests": [REQUEST], "job_id": "b-3"})
        progress = wait_for_state(client, "b-3")
        assert progress["per_item_step_status"][0]["failed_step"] == "audio"

        tts.fail_marker = None
        response = client.post("/api/batches/b-3/items/0/retry")
        assert response.status_code == 200
        assert response.json()["status"] == "success"

    def test_parse_ndjson_and_submit(self, api):
        client, _ = api
        text = (
            '{"Título da Oração": "Paz", "Base bíblica": "João 14:27", "Tema central": "paz"}\n'
            "not json\n"
        )
        response = client.post(
            "/api/batches/parse", json={"text": text, "category_id": "morning", "submit": True}
        )

        body = response.json()
        assert len(body["requests"]) == 1
        assert body["errors"][0]["line"] == 2
        job_id = body["batch"]["job_id"]
        assert wait_for_state(client, job_id)["completed"] == 1

    def test_websocket_streams_progress(self, api):
        client, _ = api
        client.post("/api/batches", json={"requests": [REQUEST], "job_id": "b-4"})

        with client.websocket_connect("/ws/batches/b-4") as websocket:
            first = websocket.receive_json()
            assert first["type"] == "progress"
            assert first["job_id"] == "b-4"
            websocket.send_text("ping")
            # Progress broadcasts may arrive before the pong
            while True:
                message = websocket.receive_text()
                if message == "pong":
                    break

        wait_for_state(client, "b-4")

    def test_websocket_unknown_batch(self, api):
        client, _ = api
        with client.websocket_connect("/ws/batches/missing") as websocket:
            assert websocket.receive_json() == {"type": "error", "error": "Batch not found"}
