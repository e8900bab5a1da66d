#!/usr/bin/env python3
"""
Tests for the HTTP API with story, media and rendering collaborators stubbed out
"""
import json
import os
import sys
import time

import httpx
import pytest
from fastapi.testclient import TestClient

# Add the backend to the path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), 'storytime_backend'))

from storytime import app as app_module
from storytime.elevenlabs_client import AudioGenerationResult
from storytime.models import OrchestrationState
from storytime.story import GeneratedStory
from storytime.synthesizer import synthesize
from storytime.video_generator import VideoGenerator
from test_video_generator import FakeEngine

IMAGES = {"https://assets.test/a.png": b"A", "https://assets.test/b.png": b"B"}


def _assets(request):
    body = IMAGES.get(str(request.url))
    return httpx.Response(200, content=body) if body is not None else httpx.Response(404)


@pytest.fixture
def client(monkeypatch):
    def template_story(req, provider=None):
        return GeneratedStory(draft=synthesize(req.prompt, req.scene_count, req.age_group), source="template")

    generator = VideoGenerator(
        engine=FakeEngine(),
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(_assets)),
    )
    monkeypatch.setattr(app_module, "generate_story_draft", template_story)
    monkeypatch.setattr(app_module, "get_video_generator", lambda: generator)
    with TestClient(app_module.app) as c:
        yield c


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["ok"] is True


def test_generate_story(client):
    r = client.post("/v1/stories:generate", json={"prompt": "two rabbits", "target_length": "medium"})
    assert r.status_code == 200
    body = r.json()
    assert body["title"] == "two rabbits"
    assert body["source"] == "template"
    assert len(json.loads(body["script"])["scenes"]) == 5
    assert [c["name"] for c in body["story"]["characters"]] == ["Rabbit One", "Rabbit Two"]


def test_generate_story_requires_prompt(client):
    assert client.post("/v1/stories:generate", json={"prompt": "   "}).status_code == 400


def test_generate_story_rejects_unknown_length(client):
    assert client.post("/v1/stories:generate", json={"prompt": "x", "target_length": "epic"}).status_code == 422


def test_scenes_from_story(client):
    draft = synthesize("two rabbits", 3, "preschool").model_dump()
    r = client.post("/v1/stories:scenes", json=draft)
    assert r.status_code == 200
    body = r.json()
    assert [s["scene_number"] for s in body["scenes"]] == [1, 2, 3]
    assert len(body["placements"]) == 6


def test_render_video(client):
    r = client.post("/v1/videos:render", json={"scenes": [
        {"image_url": "https://assets.test/a.png", "duration": 2},
        {"image_url": "https://assets.test/b.png", "duration": 3},
    ]})
    assert r.status_code == 200
    assert r.headers["content-type"] == "video/mp4"
    assert r.headers["x-audio-outcome"] == "none"
    assert r.content == b"<A|2><B|3>"


def test_render_video_reports_missing_image(client):
    r = client.post("/v1/videos:render", json={"scenes": [
        {"image_url": "https://assets.test/a.png", "duration": 2},
        {"image_url": "https://assets.test/gone.png", "duration": 3},
    ]})
    assert r.status_code == 422
    assert "scene 2" in r.json()["detail"]


@pytest.mark.parametrize("name", ["secret.txt", "missing.txt"])
def test_render_video_refuses_server_files(client, tmp_path, name):
    (tmp_path / "secret.txt").write_bytes(b"TOP-SECRET")
    path = str(tmp_path / name)
    r = client.post("/v1/videos:render", json={"scenes": [{"image_url": path, "duration": 1}]})

    assert r.status_code == 422
    assert r.json()["detail"] == "Failed to load image for scene 1"
    assert b"TOP-SECRET" not in r.content


def test_render_video_refuses_file_urls(client, tmp_path):
    secret = tmp_path / "secret.txt"
    secret.write_bytes(b"TOP-SECRET")
    r = client.post("/v1/videos:render", json={"scenes": [{"image_url": secret.as_uri(), "duration": 1}]})
    assert r.status_code == 422


def test_render_video_validation(client):
    assert client.post("/v1/videos:render", json={"scenes": []}).status_code == 400
    bad_duration = {"scenes": [{"image_url": "https://assets.test/a.png", "duration": 0}]}
    assert client.post("/v1/videos:render", json=bad_duration).status_code == 422
    bad_color = {
        "scenes": [{"image_url": "https://assets.test/a.png", "duration": 1}],
        "options": {"background_color": "black,drawtext=x"},
    }
    assert client.post("/v1/videos:render", json=bad_color).status_code == 422


def test_narrate(client, monkeypatch):
    async def fake_speech(text, voice_id=None):
        return AudioGenerationResult(audio=b"mp3", duration=3.5, transcript=text)

    monkeypatch.setattr(app_module, "generate_speech", fake_speech)
    r = client.post("/v1/scenes:narrate", json={"text": "Hello there, moon."})
    assert r.status_code == 200
    assert r.content == b"mp3"
    assert r.headers["x-audio-duration"] == "3.50"


def test_narrate_upstream_failure(client, monkeypatch):
    async def broken_speech(text, voice_id=None):
        raise RuntimeError("ELEVENLABS_API_KEY is not set")

    monkeypatch.setattr(app_module, "generate_speech", broken_speech)
    assert client.post("/v1/scenes:narrate", json={"text": "Hello"}).status_code == 502


def test_story_video_job(client, monkeypatch, tmp_path):
    final = tmp_path / "final.mp4"
    final.write_bytes(b"movie")

    async def fake_pipeline(req, on_progress=None):
        return OrchestrationState(job_id="pipeline", tmp_dir=str(tmp_path), request=req, final_path=str(final))

    monkeypatch.setattr(app_module, "run_pipeline", fake_pipeline)
    job_id = client.post("/v1/story-videos:start", json={"prompt": "two rabbits"}).json()["job_id"]

    status = None
    for _ in range(50):
        status = client.get(f"/v1/jobs/{job_id}").json()["status"]
        if status in ("succeeded", "failed"):
            break
        time.sleep(0.05)
    assert status == "succeeded"

    r = client.get(f"/v1/jobs/{job_id}/download")
    assert r.status_code == 200
    assert r.content == b"movie"
    assert client.get(f"/v1/jobs/{job_id}").status_code == 404


def test_finished_jobs_expire(client, monkeypatch, tmp_path):
    monkeypatch.setattr(app_module, "JOB_TTL_S", 60)
    job_dir = tmp_path / "job"
    job_dir.mkdir()
    (job_dir / "final.mp4").write_bytes(b"movie")

    stale = app_module.JobRecord("stale")
    stale.tmp_dir = str(job_dir)
    stale.finish("succeeded")
    stale.finished_at -= 120
    fresh = app_module.JobRecord("fresh")
    fresh.finish("failed", "boom")
    running = app_module.JobRecord("running")
    running.status = "running"
    monkeypatch.setitem(app_module.JOBS, "stale", stale)
    monkeypatch.setitem(app_module.JOBS, "fresh", fresh)
    monkeypatch.setitem(app_module.JOBS, "running", running)

    assert client.get("/v1/jobs/stale").status_code == 404
    assert not job_dir.exists()
    assert client.get("/v1/jobs/fresh").json()["status"] == "failed"
    assert client.get("/v1/jobs/running").json()["status"] == "running"


def test_unknown_job(client):
    assert client.get("/v1/jobs/nope").status_code == 404
    assert client.get("/v1/jobs/nope/download").status_code == 404
