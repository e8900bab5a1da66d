#!/usr/bin/env python3
"""
Tests for the story -> assets -> render pipeline with the external APIs stubbed out
"""
import asyncio
import os
import shutil
import sys

import pytest

# Add the backend to the path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), 'storytime_backend'))

from storytime import orchestrator
from storytime.elevenlabs_client import AudioGenerationResult
from storytime.models import AudioOutcome, Stage, StoryRequest
from storytime.story import GeneratedStory
from storytime.synthesizer import synthesize
from storytime.video_generator import VideoGenerator
from test_video_generator import FakeEngine


@pytest.fixture
def stubbed_apis(monkeypatch):
    backgrounds = []

    def fake_story(req):
        return GeneratedStory(draft=synthesize(req.prompt, req.scene_count, req.age_group), source="template")

    async def fake_background(req):
        backgrounds.append(req)
        return b"IMG"

    async def fake_speech(text):
        return AudioGenerationResult(audio=b"AUD", duration=7.0, transcript=text)

    monkeypatch.setattr(orchestrator, "generate_story_draft", fake_story)
    monkeypatch.setattr(orchestrator, "generate_scene_background", fake_background)
    monkeypatch.setattr(orchestrator, "generate_speech", fake_speech)
    return backgrounds


def test_pipeline_produces_video(stubbed_apis):
    events = []
    req = StoryRequest(prompt="two rabbits", style="comic", target_length="short")
    state = asyncio.run(orchestrator.run_pipeline(
        req,
        on_progress=events.append,
        video_generator=VideoGenerator(engine=FakeEngine()),
    ))
    try:
        assert state.source == "template"
        assert [s.scene_number for s in state.scenes] == [1, 2, 3]
        assert all(s.duration == 7.0 for s in state.scenes)
        assert state.audio_outcome == AudioOutcome.MUXED
        with open(state.final_path, "rb") as f:
            assert f.read() == b"<IMG|7><IMG|7><IMG|7>+audio(AUDAUDAUD)"
        assert events[-1].stage == Stage.COMPLETE

        first = stubbed_apis[0]
        assert first.style == "comic"
        assert [(c.name, c.position) for c in first.characters] == [("Rabbit One", "left"), ("Rabbit Two", "right")]
    finally:
        shutil.rmtree(state.tmp_dir, ignore_errors=True)


def test_pipeline_failure_propagates(stubbed_apis, monkeypatch):
    async def broken_background(req):
        raise RuntimeError("Replicate failed: failed")

    monkeypatch.setattr(orchestrator, "generate_scene_background", broken_background)
    with pytest.raises(RuntimeError):
        asyncio.run(orchestrator.run_pipeline(
            StoryRequest(prompt="two rabbits"),
            video_generator=VideoGenerator(engine=FakeEngine()),
        ))
