"""
Scene-to-video assembly.

Turns an ordered list of (image, duration, optional audio) scenes into a
single MP4 by driving ffmpeg through a fixed sequence of passes:

    loading -> preparing -> encoding -> finalizing -> complete

Progress is reported through an optional callback as global percentages
that never go backwards within a run.
"""
import asyncio
import logging
from typing import Callable, List, Optional
from urllib.parse import urlparse
from urllib.request import url2pathname

import httpx

from .media import (
    FFmpegEngine,
    audio_concat_args,
    concat_args,
    concat_list,
    mux_args,
    segment_args,
)
from .models import (
    AssemblyResult,
    AudioOutcome,
    Stage,
    VideoGenerationProgress,
    VideoOptions,
    VideoScene,
)

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[VideoGenerationProgress], None]

SILENT_VIDEO = "output_video.mp4"
FINAL_VIDEO = "final_output.mp4"
SEGMENT_LIST = "concat.txt"
AUDIO_LIST = "audio_concat.txt"
COMBINED_AUDIO = "combined_audio.m4a"

FETCH_TIMEOUT_S = 60


class VideoGenerationError(Exception):
    """A fatal assembly failure; no video is produced."""

    def __init__(self, message: str, scene_number: Optional[int] = None):
        super().__init__(message)
        self.scene_number = scene_number


class EngineLoadError(VideoGenerationError):
    pass


class SceneFetchError(VideoGenerationError):
    pass


class SceneEncodeError(VideoGenerationError):
    pass


class ConcatenationError(VideoGenerationError):
    pass


class _ProgressReporter:
    def __init__(self, callback: Optional[ProgressCallback]):
        self.callback = callback
        self.stage: Optional[Stage] = None
        self.progress = 0

    def __call__(self, stage: Stage, progress: float, message: str):
        if self.stage is not None and stage.order < self.stage.order:
            raise RuntimeError(f"progress stage went backwards: {self.stage.value} -> {stage.value}")
        self.stage = stage
        self.progress = max(self.progress, min(100, int(round(progress))))
        if self.callback is not None:
            self.callback(VideoGenerationProgress(stage=stage, progress=self.progress, message=message))


async def fetch_bytes(client: httpx.AsyncClient, url: str, allow_local_files: bool = False) -> bytes:
    """Read an asset from an http(s) URL.

    file:// URLs and local paths are only read when allow_local_files is set;
    they must never come from an HTTP caller.
    """
    if not url or not url.strip():
        raise ValueError("no URL given")
    parsed = urlparse(url)
    if parsed.scheme in ("http", "https"):
        resp = await client.get(url)
        resp.raise_for_status()
        return resp.content
    if not allow_local_files:
        raise ValueError(f"unsupported URL scheme: {parsed.scheme or 'local path'}")
    if parsed.scheme == "file":
        path = url2pathname(parsed.path)
    elif parsed.scheme and len(parsed.scheme) > 1:
        raise ValueError(f"unsupported URL scheme: {parsed.scheme}")
    else:
        path = url
    with open(path, "rb") as f:
        return f.read()


class VideoGenerator:
    def __init__(self, engine: Optional[FFmpegEngine] = None, http_client: Optional[httpx.AsyncClient] = None):
        self.engine = engine or FFmpegEngine()
        self.http_client = http_client
        self._lock = asyncio.Lock()

    def is_loaded(self) -> bool:
        return self.engine.loaded

    async def load(self, on_progress: Optional[ProgressCallback] = None):
        """Start the engine; only the first call does any work."""
        if self.engine.loaded:
            return
        report = on_progress if isinstance(on_progress, _ProgressReporter) else _ProgressReporter(on_progress)
        report(Stage.LOADING, 0, "Loading FFmpeg engine...")
        try:
            await asyncio.to_thread(self.engine.load)
        except Exception as e:
            logger.error(f"Failed to load FFmpeg: {e}")
            raise EngineLoadError("Failed to load video encoder. Please try again.") from e
        report(Stage.LOADING, 5, "FFmpeg loaded successfully")

    async def generate_video(
        self,
        scenes: List[VideoScene],
        options: Optional[VideoOptions] = None,
        on_progress: Optional[ProgressCallback] = None,
        allow_local_files: bool = False,
    ) -> bytes:
        result = await self.assemble(scenes, options, on_progress, allow_local_files)
        return result.data

    async def assemble(
        self,
        scenes: List[VideoScene],
        options: Optional[VideoOptions] = None,
        on_progress: Optional[ProgressCallback] = None,
        allow_local_files: bool = False,
    ) -> AssemblyResult:
        if not scenes:
            raise VideoGenerationError("No scenes to render")
        options = options or VideoOptions()

        async with self._lock:
            report = _ProgressReporter(on_progress)
            await self.load(report)

            owned_client = self.http_client is None
            client = self.http_client or httpx.AsyncClient(timeout=FETCH_TIMEOUT_S, follow_redirects=True)
            try:
                return await self._run(scenes, options, report, client, allow_local_files)
            finally:
                if owned_client:
                    await client.aclose()
                await self._cleanup()

    async def _run(
        self,
        scenes: List[VideoScene],
        options: VideoOptions,
        report: _ProgressReporter,
        client: httpx.AsyncClient,
        allow_local_files: bool,
    ) -> AssemblyResult:
        total = len(scenes)
        logger.info(f"Assembling {total} scenes at {options.width}x{options.height}@{options.fps}")

        # Stage images
        report(Stage.PREPARING, 10, "Downloading scene images...")
        for i, scene in enumerate(scenes):
            try:
                data = await fetch_bytes(client, scene.image_url, allow_local_files)
                await asyncio.to_thread(self.engine.write_file, f"scene_{i}.png", data)
            except Exception as e:
                # the cause stays in the log; callers only learn which scene failed
                logger.error(f"Failed to load image for scene {i + 1}: {e}")
                raise SceneFetchError(f"Failed to load image for scene {i + 1}", scene_number=i + 1) from e
            report(Stage.PREPARING, 10 + (i + 1) / total * 30, f"Loaded scene {i + 1} of {total}")

        # Pass A: one segment per scene
        report(Stage.ENCODING, 40, "Generating video...")
        segments = []
        for i, scene in enumerate(scenes):
            name = f"segment_{i}.mp4"
            args = segment_args(f"scene_{i}.png", name, scene.duration, options.width, options.height, options.fps, options.background_color)
            try:
                await asyncio.to_thread(self.engine.exec, args)
            except Exception as e:
                logger.error(f"Failed to encode scene {i + 1}: {e}")
                raise SceneEncodeError(f"Failed to encode scene {i + 1}", scene_number=i + 1) from e
            segments.append(name)
            report(Stage.ENCODING, 40 + (i + 1) / total * 30, f"Encoded scene {i + 1} of {total}")

        # Pass B: join segments in scene order
        report(Stage.ENCODING, 75, "Joining scenes...")
        try:
            await asyncio.to_thread(self.engine.write_text, SEGMENT_LIST, concat_list(segments))
            await asyncio.to_thread(self.engine.exec, concat_args(SEGMENT_LIST, SILENT_VIDEO))
        except Exception as e:
            logger.error(f"Failed to concatenate scenes: {e}")
            raise ConcatenationError("Failed to join scene videos") from e

        output, outcome, reason = SILENT_VIDEO, AudioOutcome.NONE, None
        audio_scenes = [s for s in scenes if s.audio_url]
        if audio_scenes:
            report(Stage.ENCODING, 80, "Adding audio tracks...")
            try:
                await self._add_audio(audio_scenes, client, allow_local_files)
                output, outcome = FINAL_VIDEO, AudioOutcome.MUXED
            except Exception as e:
                reason = str(e) or e.__class__.__name__
                outcome = AudioOutcome.SILENT_FALLBACK
                logger.warning(f"Audio pass failed, using silent video: {reason}")

        report(Stage.FINALIZING, 90, "Finalizing video...")
        data = await asyncio.to_thread(self.engine.read_file, output)

        report(Stage.COMPLETE, 100, "Video generated successfully!")
        logger.info(f"Video assembled: {len(data)} bytes, audio={outcome.value}")
        return AssemblyResult(data=data, audio=outcome, fallback_reason=reason)

    async def _add_audio(self, audio_scenes: List[VideoScene], client: httpx.AsyncClient, allow_local_files: bool):
        names = []
        for k, scene in enumerate(audio_scenes):
            name = f"audio_{k}.mp3"
            data = await fetch_bytes(client, scene.audio_url, allow_local_files)
            await asyncio.to_thread(self.engine.write_file, name, data)
            names.append(name)

        if len(names) == 1:
            await asyncio.to_thread(self.engine.exec, mux_args(SILENT_VIDEO, names[0], FINAL_VIDEO))
            return

        await asyncio.to_thread(self.engine.write_text, AUDIO_LIST, concat_list(names))
        await asyncio.to_thread(self.engine.exec, audio_concat_args(AUDIO_LIST, COMBINED_AUDIO))
        await asyncio.to_thread(self.engine.exec, mux_args(SILENT_VIDEO, COMBINED_AUDIO, FINAL_VIDEO))

    async def _cleanup(self):
        for name in self.engine.list_files():
            try:
                self.engine.delete_file(name)
            except Exception as e:
                logger.warning(f"Cleanup error for {name}: {e}")


_generator: Optional[VideoGenerator] = None


def get_video_generator() -> VideoGenerator:
    global _generator
    if _generator is None:
        _generator = VideoGenerator()
    return _generator
