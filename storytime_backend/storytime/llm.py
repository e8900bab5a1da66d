import os, re, json, logging
from typing import List
import httpx
from .models import LENGTH_GUIDE, StoryRequest
from .prompts import SYSTEM_PROMPT, USER_PROMPT_TEMPLATE, STORY_SCHEMA, HF_INSTRUCTION_TEMPLATE
from .settings import OPENAI_MODEL, HUGGINGFACE_STORY_MODEL

logger = logging.getLogger(__name__)

HF_INFERENCE_URL = "https://api-inference.huggingface.co/models"

_client = None

class StoryParseError(ValueError):
    pass

def _get_client():
    global _client
    if _client is None:
        from openai import OpenAI
        api_key = os.getenv("OPENAI_API_KEY", "")
        if not api_key:
            raise RuntimeError("OPENAI_API_KEY is not set; please configure your .env")
        _client = OpenAI(api_key=api_key)
    return _client

def build_user_prompt(req: StoryRequest) -> str:
    return USER_PROMPT_TEMPLATE.format(
        age_group=req.age_group,
        style=req.style,
        prompt=req.prompt.strip(),
        scene_count=req.scene_count,
        duration=LENGTH_GUIDE[req.target_length]["description"],
    )

def parse_story_json(text: str) -> dict:
    """Pull the story object out of a model response.

    Accepts bare JSON or JSON wrapped in a ``` / ```json fence.
    """
    if not text or not text.strip():
        raise StoryParseError("empty story response")
    m = re.search(r"```(?:json)?\s*\n([\s\S]*?)\n\s*```", text)
    raw = m.group(1) if m else text
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as e:
        raise StoryParseError(f"story response is not valid JSON: {e}") from e
    if not isinstance(parsed, dict) or not parsed.get("title") or not parsed.get("characters") or not parsed.get("scenes"):
        raise StoryParseError("Invalid story structure")
    return parsed

def get_story_openai(req: StoryRequest) -> dict:
    logger.info("Calling OpenAI API to generate story")
    messages = [
        {"role": "system", "content": SYSTEM_PROMPT.format(schema=STORY_SCHEMA)},
        {"role": "user", "content": build_user_prompt(req)},
    ]
    try:
        client = _get_client()
        resp = client.chat.completions.create(
            model=OPENAI_MODEL,
            messages=messages,
            temperature=0.8,
            response_format={"type": "json_object"},
        )
        content = resp.choices[0].message.content
        if not content:
            raise StoryParseError("No content returned from OpenAI")
        logger.info("Successfully received response from OpenAI")
        return parse_story_json(content)
    except Exception as e:
        logger.error(f"OpenAI API call failed: {str(e)}")
        raise

_NAME_RE = re.compile(r"\b([A-Z][a-z]+)(?=\s+(?:was|is|said|went|saw)\b)")

def convert_to_structured_story(text: str, prompt: str, scene_count: int) -> dict:
    """Best-effort structure for free text from a text2text model."""
    names: List[str] = []
    for name in _NAME_RE.findall(text or ""):
        if name not in names:
            names.append(name)
    names = names[:3]

    sentences = [s.strip() for s in re.split(r"[.!?]+", text or "") if len(s.strip()) > 10]
    per_scene = max(2, len(sentences) // max(1, scene_count))

    scenes = []
    for i in range(scene_count):
        chunk = sentences[i * per_scene:(i + 1) * per_scene]
        if not chunk:
            break
        if i == 0:
            setting = "Beginning"
        elif i == scene_count - 1:
            setting = "Ending"
        else:
            setting = f"Middle part {i}"
        scenes.append({
            "number": i + 1,
            "title": f"Scene {i + 1}",
            "setting": setting,
            "narration": ". ".join(chunk) + ".",
            "dialogue": [],
            "actions": [f"Characters interact in scene {i + 1}"],
        })

    return {
        "title": (prompt or "").strip()[:50],
        "characters": [
            {"name": n, "description": "A character in the story", "personality": "friendly and curious"}
            for n in names
        ],
        "scenes": scenes,
    }

def get_story_huggingface(req: StoryRequest, client: httpx.Client = None) -> dict:
    api_key = os.getenv("HUGGINGFACE_API_KEY", "")
    if not api_key:
        raise RuntimeError("HUGGINGFACE_API_KEY is not set; please configure your .env")
    logger.info(f"Calling HuggingFace model {HUGGINGFACE_STORY_MODEL} to generate story")
    payload = {
        "inputs": HF_INSTRUCTION_TEMPLATE.format(
            age_group=req.age_group, style=req.style, prompt=req.prompt.strip(), scene_count=req.scene_count
        ),
        "parameters": {"max_new_tokens": 1500, "temperature": 0.8, "top_p": 0.9, "return_full_text": False},
    }
    owned = client is None
    client = client or httpx.Client(timeout=120)
    try:
        r = client.post(
            f"{HF_INFERENCE_URL}/{HUGGINGFACE_STORY_MODEL}",
            headers={"Authorization": f"Bearer {api_key}"},
            json=payload,
        )
        r.raise_for_status()
        body = r.json()
    finally:
        if owned:
            client.close()
    if isinstance(body, list) and body:
        body = body[0]
    text = (body or {}).get("generated_text", "") if isinstance(body, dict) else ""
    if not text.strip():
        raise StoryParseError("HuggingFace returned no text")
    logger.info(f"Received {len(text)} characters from HuggingFace")
    return convert_to_structured_story(text, req.prompt, req.scene_count)

def get_story(req: StoryRequest, provider: str) -> dict:
    if provider == "openai":
        return get_story_openai(req)
    if provider == "huggingface":
        return get_story_huggingface(req)
    raise RuntimeError(f"Story provider {provider!r} is not configured")
