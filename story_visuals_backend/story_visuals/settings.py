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

# "openai" uses the Responses API image tool, "replicate" a reference-image model
IMAGE_PROVIDER = os.getenv("IMAGE_PROVIDER", "openai").strip().lower()

OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
OPENAI_IMAGE_MODEL = os.getenv("OPENAI_IMAGE_MODEL", "gpt-4o")

REPLICATE_API_TOKEN = os.getenv("REPLICATE_API_TOKEN", "")
REPLICATE_MODEL_VERSION = os.getenv("REPLICATE_MODEL_VERSION", "")
REPLICATE_POLL_INTERVAL_MS = int(os.getenv("REPLICATE_POLL_INTERVAL_MS", "1500"))
REPLICATE_POLL_TIMEOUT_S = int(os.getenv("REPLICATE_POLL_TIMEOUT_S", "120"))

CLOUDINARY_CLOUD_NAME = os.getenv("CLOUDINARY_CLOUD_NAME", "")
CLOUDINARY_API_KEY = os.getenv("CLOUDINARY_API_KEY", "")
CLOUDINARY_API_SECRET = os.getenv("CLOUDINARY_API_SECRET", "")
CLOUDINARY_FOLDER = os.getenv("CLOUDINARY_FOLDER", "story_gen_images")

# Optional: Vercel KV / Upstash REST for batch state shared across instances
KV_REST_API_URL = os.getenv("KV_REST_API_URL", "").strip()
KV_REST_API_TOKEN = os.getenv("KV_REST_API_TOKEN", "").strip()

BATCH_MAX_CONCURRENCY = int(os.getenv("BATCH_MAX_CONCURRENCY", "2"))
MAX_SCENES_PER_BATCH = int(os.getenv("MAX_SCENES_PER_BATCH", "30"))
BATCH_TTL_S = int(os.getenv("BATCH_TTL_S", "3600"))
SCENE_TIMEOUT_S = float(os.getenv("SCENE_TIMEOUT_S", "180"))

SCENE_IMAGE_MAX_WIDTH = int(os.getenv("SCENE_IMAGE_MAX_WIDTH", "1024"))
SCENE_IMAGE_JPEG_QUALITY = int(os.getenv("SCENE_IMAGE_JPEG_QUALITY", "80"))

# Comma-separated list of allowed origins for CORS (e.g., "https://app.vercel.app,https://www.example.com").
_allowed_origins_env = os.getenv("ALLOWED_ORIGINS", "").strip()
if _allowed_origins_env:
    ALLOWED_ORIGINS = [o.strip() for o in _allowed_origins_env.split(",") if o.strip()]
else:
    ALLOWED_ORIGINS = ["*"]

def kv_enabled() -> bool:
    return bool(KV_REST_API_URL and KV_REST_API_TOKEN)

def has_all_keys() -> bool:
    missing = []
    if IMAGE_PROVIDER == "replicate":
        if not REPLICATE_API_TOKEN: missing.append("REPLICATE_API_TOKEN")
    elif not OPENAI_API_KEY:
        missing.append("OPENAI_API_KEY")
    if not CLOUDINARY_CLOUD_NAME: missing.append("CLOUDINARY_CLOUD_NAME")
    if not CLOUDINARY_API_KEY: missing.append("CLOUDINARY_API_KEY")
    if not CLOUDINARY_API_SECRET: missing.append("CLOUDINARY_API_SECRET")
    if missing:
        logger.warning(f"Missing API keys: {', '.join(missing)}")
    return not missing
