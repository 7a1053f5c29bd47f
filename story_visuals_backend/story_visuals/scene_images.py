import asyncio, logging, uuid
from .models import SceneImageResult
from .prompts import build_scene_prompt
from .media import to_scene_jpeg
from .settings import IMAGE_PROVIDER, SCENE_TIMEOUT_S

logger = logging.getLogger(__name__)

def get_image_provider(name: str = None):
    name = (name or IMAGE_PROVIDER).lower()
    if name == "replicate":
        from .replicate_client import ReplicateImageProvider
        return ReplicateImageProvider()
    if name == "openai":
        from .openai_images import OpenAIImageProvider
        return OpenAIImageProvider()
    raise ValueError(f"Unknown IMAGE_PROVIDER: {name}")

def get_asset_storage():
    from .cloudinary_client import CloudinaryStorage
    return CloudinaryStorage()

def scene_key(scene_number: int) -> str:
    return f"scene_{scene_number}_{uuid.uuid4().hex[:12]}"

async def _generate_and_store(provider, storage, character_image_url: str, scene_text: str,
                              character_name: str, scene_number: int) -> SceneImageResult:
    prompt = build_scene_prompt(scene_text, character_name)
    try:
        image_data = await provider.generate(prompt, character_image_url)
    except (TimeoutError, asyncio.TimeoutError) as e:
        # Only the scene deadline below may surface as a TimeoutError
        raise RuntimeError(f"provider timed out: {e}") from e
    if not image_data:
        return SceneImageResult(scene_number=scene_number, error="provider returned no image")

    jpeg = to_scene_jpeg(image_data)
    url = await storage.upload(jpeg, scene_key(scene_number))
    return SceneImageResult(scene_number=scene_number, image_url=url)

async def generate_scene_image(character_image_url: str, scene_text: str, character_name: str,
                               scene_number: int, provider=None, storage=None,
                               timeout_s: float = None) -> SceneImageResult:
    """Single attempt at one scene image. Never raises: every failure becomes a result with an error."""
    timeout_s = SCENE_TIMEOUT_S if timeout_s is None else timeout_s
    logger.info(f"Generating scene {scene_number}: \"{scene_text[:50]}...\"")
    try:
        provider = provider or get_image_provider()
        storage = storage or get_asset_storage()
        result = await asyncio.wait_for(
            _generate_and_store(provider, storage, character_image_url, scene_text, character_name, scene_number),
            timeout=timeout_s,
        )
    except asyncio.TimeoutError:
        logger.error(f"Scene {scene_number} timed out after {timeout_s}s")
        return SceneImageResult(scene_number=scene_number, error=f"timed out after {timeout_s}s")
    except Exception as e:
        logger.error(f"Scene {scene_number} failed: {type(e).__name__}: {e}")
        return SceneImageResult(scene_number=scene_number, error=f"{type(e).__name__}: {e}")

    if result.ok:
        logger.info(f"Scene {scene_number} stored at {result.image_url}")
    else:
        logger.error(f"Scene {scene_number} failed: {result.error}")
    return result
