import logging
from typing import List
from .models import CharacterPlacement, SceneRecord, StoryDraft, VideoScene

logger = logging.getLogger(__name__)

DEFAULT_SCENE_DURATION = 5.0
DEFAULT_TRANSITION = "fade"

def scenes_from_draft(draft: StoryDraft) -> List[SceneRecord]:
    return [
        SceneRecord(
            scene_number=i + 1,
            title=scene.title or f"Scene {i + 1}",
            script_text=scene.narration or "",
            background_description=scene.setting,
            duration=DEFAULT_SCENE_DURATION,
            transition_type=DEFAULT_TRANSITION,
        )
        for i, scene in enumerate(draft.scenes)
    ]

def place_characters(scene_count: int, character_names: List[str]) -> List[CharacterPlacement]:
    """Every character in every scene, spread evenly from left to right."""
    placements = []
    total = len(character_names)
    for scene_number in range(1, scene_count + 1):
        for i, name in enumerate(character_names):
            placements.append(CharacterPlacement(
                scene_number=scene_number,
                character=name,
                x=i / max(1, total - 1),
                y=0.7,
                scale=1.0,
                z_index=i,
            ))
    return placements

def position_label(x: float) -> str:
    if x < 0.33:
        return "left"
    if x > 0.66:
        return "right"
    return "center"

def video_scenes_from_records(records: List[SceneRecord]) -> List[VideoScene]:
    ordered = sorted(records, key=lambda r: r.scene_number)
    missing = [r.scene_number for r in ordered if not r.background_url]
    if missing:
        raise ValueError(f"Scenes without a background image: {missing}")
    return [
        VideoScene(image_url=r.background_url, duration=r.duration, audio_url=r.audio_url)
        for r in ordered
    ]
