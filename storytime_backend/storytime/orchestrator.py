import os, uuid, tempfile, asyncio, shutil, logging
from typing import Optional
from langchain_core.runnables import RunnableConfig
from langgraph.graph import StateGraph, END
from .models import OrchestrationState, StoryRequest, VideoOptions
from .story import generate_story_draft
from .scenes import scenes_from_draft, place_characters, position_label, video_scenes_from_records
from .image_client import SceneBackgroundRequest, SceneCharacter, generate_scene_background
from .elevenlabs_client import generate_speech
from .media import write_bytes, write_text
from .video_generator import ProgressCallback, VideoGenerator, get_video_generator

logger = logging.getLogger(__name__)

def _mk_state(req: StoryRequest) -> OrchestrationState:
    job_id = str(uuid.uuid4())
    tmp_dir = os.path.join(tempfile.gettempdir(), "storytime", job_id)
    os.makedirs(tmp_dir, exist_ok=True)
    return OrchestrationState(job_id=job_id, tmp_dir=tmp_dir, request=req)

def _configurable(config: Optional[RunnableConfig]) -> dict:
    return (config or {}).get("configurable") or {}

async def node_story(state: OrchestrationState) -> dict:
    logger.info(f"Generating story for job {state.job_id}")
    generated = await asyncio.to_thread(generate_story_draft, state.request)
    write_text(os.path.join(state.tmp_dir, "story.json"), generated.draft.to_script())
    scenes = scenes_from_draft(generated.draft)
    logger.info(f"Story for job {state.job_id} has {len(scenes)} scenes (source={generated.source})")
    return {"draft": generated.draft, "source": generated.source, "scenes": scenes}

async def node_assets(state: OrchestrationState) -> dict:
    assert state.draft
    cast = {c.name: c.description for c in state.draft.characters}
    placements = place_characters(len(state.scenes), list(cast))

    scenes, image_paths, audio_paths = [], [], []
    # One scene at a time to avoid overwhelming the APIs
    for record in state.scenes:
        n = record.scene_number
        logger.info(f"Generating assets for scene {n}/{len(state.scenes)}")
        characters = [
            SceneCharacter(name=p.character, description=cast[p.character], position=position_label(p.x))
            for p in placements if p.scene_number == n
        ]
        image = await generate_scene_background(SceneBackgroundRequest(
            description=record.background_description or record.title,
            style=state.request.style,
            characters=characters,
        ))
        img_path = os.path.join(state.tmp_dir, f"scene_{n}.png")
        write_bytes(img_path, image)

        narration = await generate_speech(record.script_text or f"Scene {n}")
        aud_path = os.path.join(state.tmp_dir, f"scene_{n}.mp3")
        write_bytes(aud_path, narration.audio)

        duration = max(record.duration, narration.duration)
        scenes.append(record.model_copy(update={
            "background_url": img_path,
            "audio_url": aud_path,
            "duration": duration,
        }))
        image_paths.append(img_path)
        audio_paths.append(aud_path)
        logger.info(f"Scene {n} assets ready (duration {duration:.1f}s)")

    return {"scenes": scenes, "image_paths": image_paths, "audio_paths": audio_paths}

async def node_render(state: OrchestrationState, config: RunnableConfig) -> dict:
    opts = _configurable(config)
    generator: VideoGenerator = opts.get("video_generator") or get_video_generator()
    logger.info(f"Starting video rendering for job {state.job_id}")
    result = await generator.assemble(
        video_scenes_from_records(state.scenes),
        opts.get("video_options") or VideoOptions(),
        opts.get("on_progress"),
        allow_local_files=True,
    )
    final_path = os.path.join(state.tmp_dir, "final.mp4")
    write_bytes(final_path, result.data)
    logger.info(f"Final video created: {final_path} ({len(result.data)} bytes, audio={result.audio.value})")
    return {"final_path": final_path, "audio_outcome": result.audio}

def build_graph():
    g = StateGraph(OrchestrationState)
    g.add_node("story", node_story)
    g.add_node("assets", node_assets)
    g.add_node("render", node_render)
    g.set_entry_point("story")
    g.add_edge("story", "assets")
    g.add_edge("assets", "render")
    g.add_edge("render", END)
    return g.compile()

GRAPH = build_graph()

async def run_pipeline(
    req: StoryRequest,
    on_progress: Optional[ProgressCallback] = None,
    video_generator: Optional[VideoGenerator] = None,
    video_options: Optional[VideoOptions] = None,
) -> OrchestrationState:
    state = _mk_state(req)
    config = {"configurable": {
        "on_progress": on_progress,
        "video_generator": video_generator,
        "video_options": video_options,
    }}
    try:
        logger.info(f"Starting pipeline for job {state.job_id} in {state.tmp_dir}")
        final_state = await GRAPH.ainvoke(state, config=config)
        # LangGraph hands back the channel values as a dict
        if isinstance(final_state, OrchestrationState):
            return final_state
        return OrchestrationState.model_validate(dict(final_state))
    except Exception as e:
        logger.error(f"Pipeline failed for job {state.job_id}: {str(e)}")
        shutil.rmtree(state.tmp_dir, ignore_errors=True)
        raise
