from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from tour_worker.errors import GenerationFailedAfterRetries, GenerationTimeout, ValidationError
from tour_worker.jobs import TourJobOrchestrator
from tour_worker.main import app
from tour_worker.pipeline.models import VideoClip
from tour_worker.queue import UnavailableJobQueue

# Not used as a context manager: the lifespan (and its consumer thread) stays off.
client = TestClient(app)


@pytest.fixture
def orchestrator(redis_queue, monkeypatch):
    orch = TourJobOrchestrator(lambda: redis_queue)
    monkeypatch.setattr("tour_worker.pipeline.routes._orchestrator", orch)
    return orch


@pytest.fixture
def tour_payload():
    return {
        "clips": [
            {"url": "https://cdn.example.com/clips/front.mp4", "order": 0, "duration": 6},
            {"url": "https://cdn.example.com/clips/kitchen.mp4", "order": 1, "duration": 6},
        ],
        "propertyInfo": {
            "address": "123 Main St, Springfield, IL",
            "price": "$450,000",
            "agentName": "Jordan Lee",
        },
    }


# --- POST /generate/full-tour ---

def test_full_tour_returns_job_id(orchestrator, tour_payload):
    response = client.post("/generate/full-tour", json=tour_payload)

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert orchestrator.get_status(data["jobId"]).state.value == "waiting"


def test_full_tour_rejects_bad_url(orchestrator, tour_payload):
    tour_payload["clips"][0]["url"] = "not-a-url"

    response = client.post("/generate/full-tour", json=tour_payload)

    assert response.status_code == 400
    assert "Invalid URL" in response.json()["detail"]


def test_full_tour_rejects_empty_clip_list(orchestrator, tour_payload):
    tour_payload["clips"] = []

    assert client.post("/generate/full-tour", json=tour_payload).status_code == 400


def test_full_tour_requires_property_info(orchestrator, tour_payload):
    del tour_payload["propertyInfo"]

    assert client.post("/generate/full-tour", json=tour_payload).status_code == 422


def test_full_tour_in_degraded_mode_still_accepts(monkeypatch, tour_payload):
    monkeypatch.setattr("tour_worker.pipeline.routes._orchestrator", TourJobOrchestrator(UnavailableJobQueue))

    response = client.post("/generate/full-tour", json=tour_payload)

    assert response.status_code == 200
    job_id = response.json()["jobId"]
    assert job_id.startswith("mock-")

    status = client.get(f"/status/{job_id}")
    assert status.status_code == 503
    assert "unavailable" in status.json()["detail"]


# --- GET /status/{jobId} ---

def test_status_of_waiting_job(orchestrator, tour_payload):
    job_id = client.post("/generate/full-tour", json=tour_payload).json()["jobId"]

    response = client.get(f"/status/{job_id}")

    assert response.status_code == 200
    data = response.json()
    assert data["jobId"] == job_id
    assert data["state"] == "waiting"
    assert data["progress"] == 0
    assert data["result"] is None


def test_status_of_completed_job_has_urls(orchestrator, redis_queue, tour_payload):
    job_id = client.post("/generate/full-tour", json=tour_payload).json()["jobId"]
    redis_queue.dequeue(timeout=0)
    redis_queue.complete(job_id, {"horizontal": "https://h", "compressed": "https://c", "vertical": "https://v"})

    data = client.get(f"/status/{job_id}").json()

    assert data["state"] == "completed"
    assert data["progress"] == 100
    assert data["result"] == {"horizontal": "https://h", "compressed": "https://c", "vertical": "https://v"}


def test_status_of_failed_job_has_reason(orchestrator, redis_queue, tour_payload):
    job_id = client.post("/generate/full-tour", json=tour_payload).json()["jobId"]
    redis_queue.dequeue(timeout=0)
    redis_queue.fail(job_id, "[publish] 1 of 3 uploads failed (vertical)")

    data = client.get(f"/status/{job_id}").json()

    assert data["state"] == "failed"
    assert data["failedReason"].startswith("[publish]")
    assert data["result"] is None


def test_status_unknown_job_is_404(orchestrator):
    assert client.get("/status/no-such-job").status_code == 404


def test_status_of_mock_id_is_400(orchestrator):
    response = client.get("/status/mock-abc")

    assert response.status_code == 400
    assert "start a new video generation" in response.json()["detail"]


# --- POST /generate/room-video ---

def test_room_video_success():
    clip = VideoClip(url="https://cdn.example.com/videos/clips/x.mp4", order=2, duration=6.04)
    with patch("tour_worker.pipeline.routes.generate_room_clip", new_callable=AsyncMock, return_value=clip) as gen:
        response = client.post("/generate/room-video", json={
            "imageUrl": "https://img.example.com/kitchen.jpg", "order": 2, "filename": "kitchen.jpg",
        })

    assert response.status_code == 200
    assert response.json() == {
        "success": True, "videoUrl": "https://cdn.example.com/videos/clips/x.mp4", "duration": 6.04, "order": 2,
    }
    request = gen.call_args.args[0]
    assert request.image_url == "https://img.example.com/kitchen.jpg"
    assert request.filename == "kitchen.jpg"


def test_room_video_generation_failure_is_502():
    error = GenerationFailedAfterRetries(3, GenerationTimeout("task-1", 300))
    with patch("tour_worker.pipeline.routes.generate_room_clip", new_callable=AsyncMock, side_effect=error):
        response = client.post("/generate/room-video", json={"imageUrl": "https://img.example.com/a.jpg"})

    assert response.status_code == 502
    assert "after 3 attempts" in response.json()["detail"]


def test_room_video_invalid_url_is_400():
    with patch("tour_worker.pipeline.routes.generate_room_clip", new_callable=AsyncMock,
               side_effect=ValidationError("Invalid URL: nope")):
        response = client.post("/generate/room-video", json={"imageUrl": "nope"})

    assert response.status_code == 400


# --- Health / metrics ---

def test_health_reports_queue_mode():
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["queue"] == "unavailable"


def test_metrics_snapshot(orchestrator, tour_payload):
    client.post("/generate/full-tour", json=tour_payload)

    data = client.get("/metrics").json()

    assert data["counters"]["jobs.enqueued"] == 1
    assert "uptime_seconds" in data
