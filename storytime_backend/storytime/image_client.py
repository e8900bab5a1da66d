import io, os, time, httpx, asyncio, logging
from typing import List, Optional
from PIL import Image
from pydantic import BaseModel, Field
from .models import ArtStyle
from .settings import REPLICATE_POLL_INTERVAL_MS, REPLICATE_POLL_TIMEOUT_S, REPLICATE_MODEL_VERSION

logger = logging.getLogger(__name__)

REPLICATE_API = "https://api.replicate.com/v1"

CHARACTER_STYLES = {
    "cartoon": "vibrant cartoon style with bold outlines, exaggerated features, bright colors",
    "anime": "anime/manga style with expressive eyes, cel-shaded coloring, dynamic poses",
    "realistic": "realistic illustration style with detailed textures, natural proportions, lifelike colors",
    "comic": "comic book style with strong ink lines, dramatic shading, action-oriented poses",
}

SCENE_STYLES = {
    "cartoon": "vibrant cartoon style with bold outlines, bright cheerful colors",
    "anime": "anime/manga style with cel-shaded coloring and expressive atmosphere",
    "realistic": "realistic illustration style with detailed environment and natural lighting",
    "comic": "comic book style with strong ink lines and dramatic composition",
}

TIME_OF_DAY = {
    "morning": "morning light, sunrise, soft warm lighting",
    "afternoon": "bright daylight, clear sky, vibrant colors",
    "evening": "sunset, golden hour, warm orange tones",
    "night": "nighttime, stars, moonlight, cool blue tones",
}

class CharacterImageRequest(BaseModel):
    name: str
    description: str
    style: ArtStyle = "cartoon"
    age: Optional[str] = None
    gender: Optional[str] = None
    traits: List[str] = Field(default_factory=list)

class SceneCharacter(BaseModel):
    name: str
    description: str = ""
    position: Optional[str] = None

class SceneBackgroundRequest(BaseModel):
    description: str
    style: ArtStyle = "cartoon"
    time_of_day: Optional[str] = None
    setting: Optional[str] = None
    characters: List[SceneCharacter] = Field(default_factory=list)

def character_prompt(req: CharacterImageRequest) -> str:
    prompt = f"A {CHARACTER_STYLES[req.style]} character illustration. Character name: {req.name}. "
    prompt += req.description
    if req.age:
        prompt += f" Age: {req.age}."
    if req.gender:
        prompt += f" Gender: {req.gender}."
    if req.traits:
        prompt += f" Personality traits: {', '.join(req.traits)}."
    prompt += f" Clean white background, full body view, friendly appearance, suitable for children's content. Must be in {req.style} art style."
    return prompt

def scene_prompt(req: SceneBackgroundRequest) -> str:
    prompt = f"A {SCENE_STYLES[req.style]} scene for a children's story. "
    prompt += req.description
    if req.setting:
        prompt += f" Setting: {req.setting}."
    if req.time_of_day:
        prompt += f" Time of day: {TIME_OF_DAY.get(req.time_of_day, req.time_of_day)}."
    if req.characters:
        parts = []
        for c in req.characters:
            part = f"{c.name} ({c.description})"
            if c.position:
                part += f" positioned {c.position}"
            parts.append(part)
        prompt += f" Include these characters in the scene: {', '.join(parts)}."
    prompt += f" Vibrant colors, suitable for children's content, landscape composition. Must be in {req.style} art style."
    return prompt

def _headers():
    token = os.getenv("REPLICATE_API_TOKEN", "")
    if not token:
        raise RuntimeError("REPLICATE_API_TOKEN is not set; please configure your .env")
    return {"Authorization": f"Token {token}"}

def _model_selector() -> str:
    # Prefer explicit version from env for stability; fall back to a public model alias (latest).
    return REPLICATE_MODEL_VERSION or "black-forest-labs/flux-schnell"

def _parse_selector(selector: str):
    # ("model", {"owner", "name"}) for owner/name[:alias], ("version", {"version"}) for a bare hash
    if "/" in selector:
        owner_name, _, _version_alias = selector.partition(":")
        owner, name = owner_name.split("/", 1)
        return "model", {"owner": owner, "name": name}
    return "version", {"version": selector}

def to_png(data: bytes) -> bytes:
    """Re-encode provider output (often WebP, sometimes with alpha) as RGB PNG."""
    with Image.open(io.BytesIO(data)) as img:
        if img.format == "PNG" and img.mode == "RGB":
            return data
        if img.mode in ("RGBA", "LA", "P"):
            img = img.convert("RGBA")
            background = Image.new("RGB", img.size, (255, 255, 255))
            background.paste(img, mask=img.split()[-1])
            img = background
        elif img.mode != "RGB":
            img = img.convert("RGB")
        out = io.BytesIO()
        img.save(out, format="PNG")
        return out.getvalue()

async def create_and_wait_image(
    prompt: str,
    client: Optional[httpx.AsyncClient] = None,
    aspect_ratio: str = "16:9",
    poll_interval_s: float = REPLICATE_POLL_INTERVAL_MS / 1000.0,
    timeout_s: float = REPLICATE_POLL_TIMEOUT_S,
) -> str:
    logger.info(f"Starting image generation for prompt: {prompt[:100]}...")
    owned = client is None
    client = client or httpx.AsyncClient(timeout=30)
    try:
        selector = _model_selector()
        json_body = {"input": {"prompt": prompt, "num_outputs": 1, "aspect_ratio": aspect_ratio}}
        mode, data = _parse_selector(selector)
        if mode == "version":
            json_body["version"] = data["version"]
            url = f"{REPLICATE_API}/predictions"
        else:
            url = f"{REPLICATE_API}/models/{data['owner']}/{data['name']}/predictions"

        r = await client.post(url, headers={**_headers(), "Content-Type": "application/json"}, json=json_body)
        if r.status_code >= 400:
            logger.error(f"Replicate create failed {r.status_code}: {r.text}")
            raise RuntimeError(f"Replicate create failed {r.status_code}: {r.text}")
        pred_id = r.json()["id"]
        logger.info(f"Replicate prediction created with ID: {pred_id}")

        start = time.monotonic()
        while True:
            s = await client.get(f"{REPLICATE_API}/predictions/{pred_id}", headers=_headers())
            if s.status_code >= 400:
                logger.error(f"Replicate status failed {s.status_code}: {s.text}")
                raise RuntimeError(f"Replicate status failed {s.status_code}: {s.text}")
            body = s.json()
            status = body.get("status")
            logger.info(f"Replicate prediction {pred_id} status: {status}")

            if status in ("succeeded", "failed", "canceled"):
                if status != "succeeded":
                    raise RuntimeError(f"Replicate failed: {status}. error={body.get('error')}")
                output = body.get("output")
                if isinstance(output, list) and output:
                    return output[0]
                if isinstance(output, str) and output:
                    return output
                raise RuntimeError("Replicate succeeded but no output URL")
            if time.monotonic() - start > timeout_s:
                logger.error("Replicate polling timeout")
                raise TimeoutError("Replicate polling timeout")
            await asyncio.sleep(poll_interval_s)
    finally:
        if owned:
            await client.aclose()

async def generate_image(prompt: str, client: Optional[httpx.AsyncClient] = None, **kwargs) -> bytes:
    owned = client is None
    client = client or httpx.AsyncClient(timeout=60, follow_redirects=True)
    try:
        url = await create_and_wait_image(prompt, client=client, **kwargs)
        logger.info(f"Downloading generated image: {url}")
        img = await client.get(url)
        img.raise_for_status()
        return to_png(img.content)
    finally:
        if owned:
            await client.aclose()

async def generate_character_image(req: CharacterImageRequest, client: Optional[httpx.AsyncClient] = None, **kwargs) -> bytes:
    return await generate_image(character_prompt(req), client=client, aspect_ratio="1:1", **kwargs)

async def generate_scene_background(req: SceneBackgroundRequest, client: Optional[httpx.AsyncClient] = None, **kwargs) -> bytes:
    return await generate_image(scene_prompt(req), client=client, aspect_ratio="16:9", **kwargs)
