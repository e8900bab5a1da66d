import logging
from typing import Literal, Optional
from pydantic import BaseModel
from .llm import get_story
from .models import StoryDraft, StoryRequest
from .settings import STORY_PROVIDER
from .synthesizer import synthesize

logger = logging.getLogger(__name__)

class GeneratedStory(BaseModel):
    draft: StoryDraft
    source: Literal["ai", "template"]
    fallback_reason: Optional[str] = None

def _ai_draft(req: StoryRequest, provider: str) -> StoryDraft:
    raw = get_story(req, provider)
    draft = StoryDraft.model_validate(raw)
    if len(draft.scenes) != req.scene_count:
        raise ValueError(f"AI story has {len(draft.scenes)} scenes, expected {req.scene_count}")
    return draft

def generate_story_draft(req: StoryRequest, provider: Optional[str] = None) -> GeneratedStory:
    """AI story when possible, template story otherwise. Does not raise for provider failures."""
    provider = provider or STORY_PROVIDER
    try:
        draft = _ai_draft(req, provider)
        result = GeneratedStory(draft=draft, source="ai")
    except Exception as e:
        logger.warning(f"AI story generation failed ({provider}), using template story: {e}")
        draft = synthesize(req.prompt, req.scene_count, req.age_group)
        result = GeneratedStory(draft=draft, source="template", fallback_reason=str(e))

    unknown = draft.unknown_speakers()
    if unknown:
        logger.warning(f"Dialogue references characters not in the cast: {unknown}")
    logger.info(f"Story ready: '{draft.title}' ({len(draft.scenes)} scenes, source={result.source})")
    return result
