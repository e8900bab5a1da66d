import os, time, uuid, shutil, asyncio, logging
from typing import Dict, List, Optional
from fastapi import FastAPI, HTTPException
from fastapi.responses import Response, StreamingResponse
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

# Ensure .env is loaded before importing modules that initialize API clients
from .settings import has_all_keys, ALLOWED_ORIGINS, JOB_TTL_S
from .models import (
    CharacterPlacement,
    SceneRecord,
    StoryDraft,
    StoryRequest,
    VideoGenerationProgress,
    VideoOptions,
    VideoScene,
)
from .story import generate_story_draft
from .scenes import scenes_from_draft, place_characters
from .image_client import CharacterImageRequest, SceneBackgroundRequest, generate_character_image, generate_scene_background
from .elevenlabs_client import generate_speech
from .video_generator import SceneFetchError, VideoGenerationError, get_video_generator
from .orchestrator import run_pipeline

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(title="StoryTime Backend")

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS or ["*"],
    allow_credentials=True,
    allow_methods=["POST", "GET", "OPTIONS"],
    allow_headers=["*"],
)

class NarrateRequest(BaseModel):
    text: str
    voice_id: Optional[str] = None

class RenderRequest(BaseModel):
    scenes: List[VideoScene]
    options: VideoOptions = VideoOptions()

class ScenesResponse(BaseModel):
    scenes: List[SceneRecord]
    placements: List[CharacterPlacement]

@app.get("/health")
def health():
    keys_ok = has_all_keys()
    logger.info(f"Health check: API keys present = {keys_ok}")
    return {"ok": True, "has_keys": keys_ok}

@app.post("/v1/stories:generate")
async def generate_story(req: StoryRequest):
    if not req.prompt.strip():
        raise HTTPException(400, "prompt is required")
    generated = await asyncio.to_thread(generate_story_draft, req)
    draft = generated.draft
    return {
        "title": draft.title or "Untitled Story",
        "script": draft.to_script(),
        "story": draft.model_dump(),
        "source": generated.source,
    }

@app.post("/v1/stories:scenes", response_model=ScenesResponse)
def create_scenes(draft: StoryDraft):
    scenes = scenes_from_draft(draft)
    placements = place_characters(len(scenes), [c.name for c in draft.characters])
    return ScenesResponse(scenes=scenes, placements=placements)

@app.post("/v1/characters:image")
async def character_image(req: CharacterImageRequest):
    try:
        png = await generate_character_image(req)
    except Exception as e:
        logger.error(f"Character image generation failed for {req.name}: {e}")
        raise HTTPException(502, f"Failed to generate character: {e}")
    return Response(content=png, media_type="image/png")

@app.post("/v1/scenes:background")
async def scene_background(req: SceneBackgroundRequest):
    try:
        png = await generate_scene_background(req)
    except Exception as e:
        logger.error(f"Scene background generation failed: {e}")
        raise HTTPException(502, f"Failed to generate background: {e}")
    return Response(content=png, media_type="image/png")

@app.post("/v1/scenes:narrate")
async def narrate(req: NarrateRequest):
    if not req.text.strip():
        raise HTTPException(400, "No text to narrate")
    try:
        result = await generate_speech(req.text, voice_id=req.voice_id)
    except Exception as e:
        logger.error(f"Narration failed: {e}")
        raise HTTPException(502, f"Failed to generate scene audio: {e}")
    return Response(
        content=result.audio,
        media_type="audio/mpeg",
        headers={"X-Audio-Duration": f"{result.duration:.2f}"},
    )

@app.post("/v1/videos:render")
async def render_video(req: RenderRequest):
    if not req.scenes:
        raise HTTPException(400, "at least one scene is required")
    try:
        result = await get_video_generator().assemble(req.scenes, req.options)
    except SceneFetchError as e:
        raise HTTPException(422, str(e))
    except VideoGenerationError as e:
        raise HTTPException(500, str(e))
    return Response(
        content=result.data,
        media_type="video/mp4",
        headers={
            "Content-Disposition": 'attachment; filename="story.mp4"',
            "X-Audio-Outcome": result.audio.value,
        },
    )

# --- in-memory job registry for the full story-to-video pipeline ---
class JobRecord:
    def __init__(self, job_id: str):
        self.job_id = job_id
        self.status = "queued"
        self.error: Optional[str] = None
        self.progress: Optional[VideoGenerationProgress] = None
        self.tmp_dir: Optional[str] = None
        self.final_path: Optional[str] = None
        self.task: Optional[asyncio.Task] = None
        self.finished_at: Optional[float] = None

    def finish(self, status: str, error: Optional[str] = None):
        self.status = status
        self.error = error
        self.finished_at = time.monotonic()

JOBS: Dict[str, JobRecord] = {}

def _evict_expired_jobs():
    now = time.monotonic()
    expired = [j for j in JOBS.values() if j.finished_at is not None and now - j.finished_at > JOB_TTL_S]
    for job in expired:
        logger.info(f"Evicting job {job.job_id} ({job.status}) after {JOB_TTL_S}s")
        JOBS.pop(job.job_id, None)
        if job.tmp_dir:
            shutil.rmtree(job.tmp_dir, ignore_errors=True)

async def _background_render(job: JobRecord, req: StoryRequest):
    def on_progress(p: VideoGenerationProgress):
        job.progress = p

    try:
        logger.info(f"Starting background render for job {job.job_id}")
        job.status = "running"
        final_state = await run_pipeline(req, on_progress=on_progress)
        job.tmp_dir = final_state.tmp_dir
        job.final_path = final_state.final_path
        job.finish("succeeded")
        logger.info(f"Background render completed successfully for job {job.job_id}")
    except Exception as e:
        logger.exception(f"Background render failed for job {job.job_id}: {e}")
        job.finish("failed", str(e))

@app.post("/v1/story-videos:start")
async def start_job(req: StoryRequest):
    if not req.prompt.strip():
        raise HTTPException(400, "prompt is required")
    _evict_expired_jobs()
    job = JobRecord(str(uuid.uuid4()))
    JOBS[job.job_id] = job
    job.task = asyncio.create_task(_background_render(job, req))
    return {"job_id": job.job_id, "status": job.status}

@app.get("/v1/jobs/{job_id}")
async def job_status(job_id: str):
    _evict_expired_jobs()
    job = JOBS.get(job_id)
    if not job:
        raise HTTPException(404, "job not found")
    return {
        "job_id": job.job_id,
        "status": job.status,
        "error": job.error,
        "progress": job.progress.model_dump() if job.progress else None,
    }

@app.get("/v1/jobs/{job_id}/download")
def job_download(job_id: str):
    job = JOBS.get(job_id)
    if not job:
        raise HTTPException(404, "job not found")
    if job.status != "succeeded" or not job.final_path or not os.path.exists(job.final_path):
        raise HTTPException(409, "job not ready")
    def iterfile(path, tmp_dir):
        try:
            with open(path, "rb") as f:
                for chunk in iter(lambda: f.read(1024 * 1024), b""):
                    yield chunk
        finally:
            shutil.rmtree(tmp_dir, ignore_errors=True)
            JOBS.pop(job_id, None)
    filename = f"storytime-{job.job_id}.mp4"
    headers = {"Content-Disposition": f'attachment; filename="{filename}"'}
    return StreamingResponse(
        iterfile(job.final_path, job.tmp_dir or os.path.dirname(job.final_path)),
        media_type="video/mp4",
        headers=headers
    )
