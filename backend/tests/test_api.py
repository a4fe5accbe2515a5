"""Tests for the HTTP API."""
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from reelmaker.api import routes
from reelmaker.errors import (
    ConcatenationError,
    DetectionError,
    FetchError,
    FinalizeError,
    NoHighlightsError,
    TranscodeError,
)
from reelmaker.main import app


class _FakePipeline:
    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error
        self.calls = []

    async def run(self, source_url, output_dir=None, output_filename=None, progress_callback=None):
        self.calls.append((source_url, output_dir, output_filename))
        if self.error:
            raise self.error
        return self.result


@pytest.fixture
def client_with():
    def make(pipeline):
        app.dependency_overrides[routes.get_pipeline] = lambda: pipeline
        return TestClient(app)

    yield make
    app.dependency_overrides.clear()


def test_root():
    response = TestClient(app).get("/")
    assert response.status_code == 200
    assert response.json()["api"] == "/api"


def test_create_highlights(client_with):
    pipeline = _FakePipeline(result=Path("/srv/reels/final.mp4"))
    client = client_with(pipeline)

    response = client.post("/api/video/highlights", json={
        "source_url": "https://cdn.example.com/game.mp4",
        "output_dir": "/srv/reels",
        "output_filename": "final.mp4",
    })

    assert response.status_code == 200
    body = response.json()
    assert body["message"] == "Video highlights created successfully"
    assert body["highlights_path"] == str(Path("/srv/reels/final.mp4"))
    assert body["original_video"] == "https://cdn.example.com/game.mp4"
    assert pipeline.calls == [("https://cdn.example.com/game.mp4", "/srv/reels", "final.mp4")]


def test_optional_fields_default_to_none(client_with):
    pipeline = _FakePipeline(result=Path("reel.mp4"))
    response = client_with(pipeline).post(
        "/api/video/highlights", json={"source_url": "https://cdn.example.com/game.mp4"}
    )
    assert response.status_code == 200
    assert pipeline.calls[0][1:] == (None, None)


def test_missing_source_url(client_with):
    response = client_with(_FakePipeline()).post("/api/video/highlights", json={})
    assert response.status_code == 422


@pytest.mark.parametrize("error, status", [
    (ValueError("output_filename must be a plain file name"), 400),
    (NoHighlightsError("No usable highlight segments"), 422),
    (FetchError("Source download failed: HTTP 404"), 502),
    (DetectionError("Detection request failed"), 502),
    (TranscodeError("Failed to extract segment", exit_code=1, stderr="bad"), 500),
    (ConcatenationError("Failed to join clips", exit_code=1), 500),
    (FinalizeError("Could not save highlight reel"), 500),
])
def test_error_mapping(client_with, error, status):
    response = client_with(_FakePipeline(error=error)).post(
        "/api/video/highlights", json={"source_url": "https://cdn.example.com/game.mp4"}
    )
    assert response.status_code == status
    assert response.json()["detail"]


def test_missing_gemini_key_is_service_unavailable(monkeypatch):
    monkeypatch.setattr(routes.settings, "gemini_api_key", None)
    routes._shared_pipeline.cache_clear()
    try:
        response = TestClient(app).post(
            "/api/video/highlights", json={"source_url": "https://cdn.example.com/game.mp4"}
        )
    finally:
        routes._shared_pipeline.cache_clear()

    assert response.status_code == 503
    assert "GEMINI_API_KEY" in response.json()["detail"]


class TestHealth:
    """Tests for the health endpoint."""

    def test_healthy(self, monkeypatch):
        monkeypatch.setattr(routes, "check_ffmpeg_available", lambda: True)
        monkeypatch.setattr(routes, "check_ffprobe_available", lambda: True)
        monkeypatch.setattr(routes.settings, "gemini_api_key", "key")

        body = TestClient(app).get("/api/health").json()

        assert body["status"] == "healthy"
        assert body["message"] is None

    def test_degraded(self, monkeypatch):
        monkeypatch.setattr(routes, "check_ffmpeg_available", lambda: False)
        monkeypatch.setattr(routes, "check_ffprobe_available", lambda: True)
        monkeypatch.setattr(routes.settings, "gemini_api_key", None)

        body = TestClient(app).get("/api/health").json()

        assert body["status"] == "degraded"
        assert not body["ffmpeg_available"]
        assert not body["gemini_configured"]
        assert "ffmpeg" in body["message"]
        assert "GEMINI_API_KEY" in body["message"]
