#!/usr/bin/env python3
"""
Tests for the ffmpeg command builders and engine working directory
"""
import os
import sys
from types import SimpleNamespace

import pytest

# Add the backend to the path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), 'storytime_backend'))

from storytime import media
from storytime.media import (
    FFmpegEngine,
    FFmpegError,
    audio_concat_args,
    concat_args,
    concat_list,
    format_seconds,
    mux_args,
    segment_args,
)


def test_format_seconds():
    assert format_seconds(2) == "2"
    assert format_seconds(2.0) == "2"
    assert format_seconds(2.5) == "2.5"


def test_segment_args():
    args = segment_args("scene_0.png", "segment_0.mp4", 3, 1280, 720, 30, "black")
    assert args[:6] == ["-loop", "1", "-framerate", "30", "-i", "scene_0.png"]
    assert args[args.index("-t") + 1] == "3"
    assert args[args.index("-vf") + 1] == (
        "scale=1280:720:force_original_aspect_ratio=decrease,"
        "pad=1280:720:(ow-iw)/2:(oh-ih)/2:black,format=yuv420p"
    )
    assert args[args.index("-c:v") + 1] == "libx264"
    assert args[args.index("-preset") + 1] == "ultrafast"
    assert args[args.index("-crf") + 1] == "23"
    assert args[-1] == "segment_0.mp4"


def test_concat_list():
    assert concat_list(["segment_0.mp4", "segment_1.mp4"]) == "file 'segment_0.mp4'\nfile 'segment_1.mp4'\n"


def test_concat_and_mux_args():
    assert concat_args("concat.txt", "output_video.mp4") == [
        "-f", "concat", "-safe", "0", "-i", "concat.txt", "-c", "copy", "output_video.mp4",
    ]
    assert audio_concat_args("audio_concat.txt", "combined_audio.m4a")[-3:] == ["-c:a", "aac", "combined_audio.m4a"]
    assert mux_args("output_video.mp4", "audio_0.mp3", "final_output.mp4") == [
        "-i", "output_video.mp4", "-i", "audio_0.mp3",
        "-c:v", "copy", "-c:a", "aac", "-shortest", "final_output.mp4",
    ]


def test_engine_files(tmp_path):
    engine = FFmpegEngine(work_dir=str(tmp_path))
    engine.write_file("scene_0.png", b"png")
    engine.write_text("concat.txt", "file 'segment_0.mp4'\n")

    assert engine.list_files() == ["concat.txt", "scene_0.png"]
    assert engine.read_file("scene_0.png") == b"png"

    engine.delete_file("scene_0.png")
    engine.delete_file("scene_0.png")
    assert engine.list_files() == ["concat.txt"]


def test_engine_rejects_paths(tmp_path):
    engine = FFmpegEngine(work_dir=str(tmp_path))
    with pytest.raises(ValueError):
        engine.write_file("../escape.png", b"")


def test_engine_load_and_exec(tmp_path, monkeypatch):
    commands = []

    def fake_run(cmd, cwd=None, stdout=None, stderr=None):
        commands.append((cmd, cwd))
        return SimpleNamespace(returncode=0, stdout=b"", stderr=b"")

    monkeypatch.setattr(media.shutil, "which", lambda name: "/usr/bin/ffmpeg")
    monkeypatch.setattr(media.subprocess, "run", fake_run)

    engine = FFmpegEngine(work_dir=str(tmp_path))
    engine.load()
    engine.load()
    assert engine.loaded
    assert commands == [(["/usr/bin/ffmpeg", "-version"], None)]

    engine.exec(["-i", "a.png", "b.mp4"])
    cmd, cwd = commands[-1]
    assert cmd == ["/usr/bin/ffmpeg", "-y", "-hide_banner", "-loglevel", "error", "-i", "a.png", "b.mp4"]
    assert cwd == str(tmp_path)


def test_engine_exec_failure_carries_stderr(tmp_path, monkeypatch):
    monkeypatch.setattr(media.shutil, "which", lambda name: "/usr/bin/ffmpeg")
    results = iter([
        SimpleNamespace(returncode=0, stdout=b"", stderr=b""),
        SimpleNamespace(returncode=1, stdout=b"", stderr=b"No such file"),
    ])
    monkeypatch.setattr(media.subprocess, "run", lambda *a, **kw: next(results))

    engine = FFmpegEngine(work_dir=str(tmp_path))
    engine.load()
    with pytest.raises(FFmpegError) as excinfo:
        engine.exec(["-i", "missing.png", "out.mp4"])
    assert excinfo.value.stderr == "No such file"


def test_engine_load_without_binary(monkeypatch):
    monkeypatch.setattr(media.shutil, "which", lambda name: None)
    engine = FFmpegEngine(binary="no-such-ffmpeg")
    with pytest.raises(FFmpegError):
        engine.load()
    assert not engine.loaded


def test_exec_requires_load(tmp_path):
    with pytest.raises(FFmpegError):
        FFmpegEngine(work_dir=str(tmp_path)).exec(["-version"])


def test_close_removes_owned_work_dir(monkeypatch):
    monkeypatch.setattr(media.shutil, "which", lambda name: "/usr/bin/ffmpeg")
    monkeypatch.setattr(media.subprocess, "run", lambda *a, **kw: SimpleNamespace(returncode=0, stdout=b"", stderr=b""))

    engine = FFmpegEngine()
    engine.load()
    work_dir = engine.work_dir
    assert os.path.isdir(work_dir)
    engine.close()
    assert not os.path.exists(work_dir)
    assert not engine.loaded
