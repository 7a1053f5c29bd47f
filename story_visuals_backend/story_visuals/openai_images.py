import base64, logging
from typing import Optional
from .settings import OPENAI_API_KEY, OPENAI_IMAGE_MODEL

logger = logging.getLogger(__name__)

_client = None

def _get_client():
    global _client
    if _client is None:
        from openai import AsyncOpenAI
        if not OPENAI_API_KEY:
            raise RuntimeError("OPENAI_API_KEY is not set; please configure your .env")
        _client = AsyncOpenAI(api_key=OPENAI_API_KEY)
    return _client


class OpenAIImageProvider:
    """Generates a scene with the Responses API image tool, anchored on a reference image."""

    name = "openai"

    def __init__(self, client=None, model: str = None):
        self._client = client
        self.model = model or OPENAI_IMAGE_MODEL

    @property
    def client(self):
        if self._client is None:
            self._client = _get_client()
        return self._client

    async def generate(self, prompt: str, reference_image_url: str) -> Optional[bytes]:
        logger.info(f"Calling OpenAI {self.model} image generation for prompt: {prompt[:80]}...")
        resp = await self.client.responses.create(
            model=self.model,
            input=[
                {
                    "role": "user",
                    "content": [
                        {"type": "input_text", "text": prompt},
                        {"type": "input_image", "image_url": reference_image_url},
                    ],
                }
            ],
            tools=[{"type": "image_generation"}],
        )
        for item in resp.output or []:
            if getattr(item, "type", None) == "image_generation_call" and getattr(item, "result", None):
                logger.info("OpenAI returned an image_generation_call result")
                return base64.b64decode(item.result)
        logger.error("OpenAI response contained no image_generation_call result")
        return None
