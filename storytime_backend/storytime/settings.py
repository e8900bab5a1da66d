import os
from dotenv import load_dotenv
import logging

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Load .env file if it exists (for local development)
env_path = os.path.join(os.path.dirname(__file__), "..", ".env")
if os.path.exists(env_path):
    load_dotenv(env_path)
    logger.info("Loaded .env file for local development")
else:
    logger.info("No .env file found, using environment variables")

OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
HUGGINGFACE_API_KEY = os.getenv("HUGGINGFACE_API_KEY", "")
HUGGINGFACE_STORY_MODEL = os.getenv("HUGGINGFACE_STORY_MODEL", "google/flan-t5-large")

# "openai" or "huggingface"; anything else disables the AI call and always uses the template story
STORY_PROVIDER = os.getenv("STORY_PROVIDER", "openai").strip().lower()

REPLICATE_API_TOKEN = os.getenv("REPLICATE_API_TOKEN", "")
REPLICATE_MODEL_VERSION = os.getenv("REPLICATE_MODEL_VERSION", "")
REPLICATE_POLL_INTERVAL_MS = int(os.getenv("REPLICATE_POLL_INTERVAL_MS", "1500"))
REPLICATE_POLL_TIMEOUT_S = int(os.getenv("REPLICATE_POLL_TIMEOUT_S", "120"))

ELEVENLABS_API_KEY = os.getenv("ELEVENLABS_API_KEY", "")
# Bella, a young child-friendly female voice
ELEVENLABS_VOICE_ID = os.getenv("ELEVENLABS_VOICE_ID", "EXAVITQu4vr4xnSDxMaL")

FFMPEG_BINARY = os.getenv("FFMPEG_BINARY", "ffmpeg")
VIDEO_WIDTH = int(os.getenv("VIDEO_WIDTH", "1280"))
VIDEO_HEIGHT = int(os.getenv("VIDEO_HEIGHT", "720"))
FPS = int(os.getenv("FPS", "30"))
VIDEO_BACKGROUND_COLOR = os.getenv("VIDEO_BACKGROUND_COLOR", "black")

# Finished jobs (and their temp dirs) are dropped this long after completion if never downloaded
JOB_TTL_S = int(os.getenv("JOB_TTL_S", "3600"))

# Comma-separated list of allowed origins for CORS (e.g., "https://storytime.example.com").
_allowed_origins_env = os.getenv("ALLOWED_ORIGINS", "").strip()
if _allowed_origins_env:
    ALLOWED_ORIGINS = [o.strip() for o in _allowed_origins_env.split(",") if o.strip()]
else:
    ALLOWED_ORIGINS = ["*"]

STORY_PROVIDER_KEYS = {
    "openai": "OPENAI_API_KEY",
    "huggingface": "HUGGINGFACE_API_KEY",
}

def has_all_keys() -> bool:
    """True when the story provider in use, Replicate and ElevenLabs are all configured."""
    required = {
        "REPLICATE_API_TOKEN": REPLICATE_API_TOKEN,
        "ELEVENLABS_API_KEY": ELEVENLABS_API_KEY,
    }
    story_key = STORY_PROVIDER_KEYS.get(STORY_PROVIDER)
    if story_key:
        required[story_key] = globals()[story_key]
    missing = [name for name, value in required.items() if not value]
    if missing:
        logger.warning(f"Missing API keys: {', '.join(missing)}")
    return not missing
