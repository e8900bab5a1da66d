import os, httpx, asyncio, logging
from typing import Optional
from pydantic import BaseModel
from .settings import ELEVENLABS_VOICE_ID

logger = logging.getLogger(__name__)

# Child-friendly voices
VOICES = {
    "bella": "EXAVITQu4vr4xnSDxMaL",
    "rachel": "21m00Tcm4TlvDq8ikWAM",
    "domi": "AZnzlk1XvdvUeBnXmlld",
    "antoni": "ErXwobaYiN019PkySvjV",
    "josh": "TxGEqnHWrfWFTfGW9XjX",
    "arnold": "VR6AewLTigWG4xSOukaG",
}

WORDS_PER_MINUTE = 150

class AudioGenerationResult(BaseModel):
    audio: bytes
    duration: float
    transcript: str

def estimate_speech_duration(text: str, rate: float = 1.0) -> float:
    """Seconds of speech at ~150 words per minute, never below one second."""
    words = len(text.split())
    minutes = words / (WORDS_PER_MINUTE * rate)
    return max(1.0, minutes * 60)

def _headers():
    api_key = os.getenv("ELEVENLABS_API_KEY", "")
    if not api_key:
        raise RuntimeError("ELEVENLABS_API_KEY is not set; please configure your .env")
    return {
        "xi-api-key": api_key,
        "Content-Type": "application/json",
        "Accept": "audio/mpeg",
    }

async def tts_to_bytes(text: str, voice_id: Optional[str] = None, max_retries: int = 3, client: Optional[httpx.AsyncClient] = None) -> bytes:
    payload = {
        "text": text,
        "model_id": "eleven_turbo_v2_5",
        "voice_settings": {"stability": 0.5, "similarity_boost": 0.75},
    }
    voice = VOICES.get((voice_id or "").lower(), voice_id) or ELEVENLABS_VOICE_ID
    url = f"https://api.elevenlabs.io/v1/text-to-speech/{voice}"

    owned = client is None
    client = client or httpx.AsyncClient(timeout=60)
    try:
        for attempt in range(max_retries + 1):
            try:
                r = await client.post(url, headers=_headers(), json=payload)
                r.raise_for_status()
                return r.content
            except httpx.HTTPStatusError as e:
                if e.response.status_code == 429 and attempt < max_retries:
                    # Exponential backoff: wait 2^attempt seconds
                    wait_time = 2 ** attempt
                    logger.warning(f"ElevenLabs rate limited (429). Retrying in {wait_time} seconds... (attempt {attempt + 1}/{max_retries + 1})")
                    await asyncio.sleep(wait_time)
                    continue
                logger.error(f"ElevenLabs API error: {e.response.status_code} - {e.response.text}")
                raise
    finally:
        if owned:
            await client.aclose()

async def generate_speech(text: str, voice_id: Optional[str] = None, client: Optional[httpx.AsyncClient] = None) -> AudioGenerationResult:
    logger.info(f"Generating TTS with ElevenLabs for {len(text)} characters")
    audio = await tts_to_bytes(text, voice_id=voice_id, client=client)
    duration = estimate_speech_duration(text)
    logger.info(f"Generated {len(audio)} bytes of audio (estimated {duration:.2f}s)")
    return AudioGenerationResult(audio=audio, duration=duration, transcript=text)
