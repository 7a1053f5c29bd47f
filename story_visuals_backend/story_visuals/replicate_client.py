import time, httpx, asyncio, logging
from typing import Optional
from .settings import (
    REPLICATE_API_TOKEN,
    REPLICATE_MODEL_VERSION,
    REPLICATE_POLL_INTERVAL_MS,
    REPLICATE_POLL_TIMEOUT_S,
)

logger = logging.getLogger(__name__)

API_BASE = "https://api.replicate.com/v1"
DEFAULT_MODEL = "black-forest-labs/flux-kontext-pro"

def _parse_selector(selector: str):
    # Returns a tuple (mode, data)
    # mode == "version": data={"version": <hash>}
    # mode == "model": data={"owner": <owner>, "name": <name>}
    owner_name, _, _version_alias = selector.partition(":")
    if "/" in owner_name:
        owner, name = owner_name.split("/", 1)
        return "model", {"owner": owner, "name": name}
    return "version", {"version": selector}


class ReplicateImageProvider:
    """Image-to-image scene generation through a Replicate reference-image model."""

    name = "replicate"

    def __init__(self, token: str = None, selector: str = None, transport: httpx.AsyncBaseTransport = None,
                 poll_interval_s: float = None, poll_timeout_s: float = None):
        self.token = token if token is not None else REPLICATE_API_TOKEN
        # Prefer explicit version from env for stability; fall back to a public model alias (latest).
        self.selector = selector or REPLICATE_MODEL_VERSION or DEFAULT_MODEL
        self.transport = transport
        self.poll_interval_s = poll_interval_s if poll_interval_s is not None else REPLICATE_POLL_INTERVAL_MS / 1000.0
        self.poll_timeout_s = poll_timeout_s if poll_timeout_s is not None else REPLICATE_POLL_TIMEOUT_S

    def _headers(self):
        if not self.token:
            raise RuntimeError("REPLICATE_API_TOKEN is not set; please configure your .env")
        return {"Authorization": f"Token {self.token}"}

    def _client(self, timeout: float = 30) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout, transport=self.transport)

    async def generate(self, prompt: str, reference_image_url: str) -> Optional[bytes]:
        output_url = await self.create_and_wait(prompt, reference_image_url)
        if not output_url:
            return None
        async with self._client(timeout=60) as client:
            img = await client.get(output_url)
            img.raise_for_status()
            logger.info(f"Downloaded Replicate output ({len(img.content)} bytes)")
            return img.content

    async def create_and_wait(self, prompt: str, reference_image_url: str) -> Optional[str]:
        logger.info(f"Starting Replicate image generation for prompt: {prompt[:100]}...")

        async with self._client() as client:
            logger.info(f"Using Replicate model: {self.selector}")
            json_body = {
                "input": {
                    "prompt": prompt,
                    "input_image": reference_image_url,
                    "aspect_ratio": "1:1",
                    "output_format": "png",
                }
            }
            mode, data = _parse_selector(self.selector)
            if mode == "version":
                json_body["version"] = data["version"]
                url = f"{API_BASE}/predictions"
            else:
                url = f"{API_BASE}/models/{data['owner']}/{data['name']}/predictions"

            async def _create(url_to_use: str, body: dict):
                return await client.post(
                    url_to_use,
                    headers={**self._headers(), "Content-Type": "application/json"},
                    json=body,
                )

            r = await _create(url, json_body)
            if r.status_code >= 400:
                logger.error(f"Replicate create failed {r.status_code}: {r.text}")
                # Model endpoint can 404 for aliased models; resolve the latest version instead.
                if mode == "model" and r.status_code == 404:
                    logger.info("Falling back to latest version resolution for model")
                    model_resp = await client.get(
                        f"{API_BASE}/models/{data['owner']}/{data['name']}",
                        headers=self._headers()
                    )
                    model_resp.raise_for_status()
                    version_id = (model_resp.json().get("latest_version") or {}).get("id")
                    if not version_id:
                        raise RuntimeError("Could not resolve latest version for model")
                    logger.info(f"Resolved latest version: {version_id}")
                    r = await _create(f"{API_BASE}/predictions", {**json_body, "version": version_id})
                    if r.status_code >= 400:
                        raise RuntimeError(f"Replicate create failed {r.status_code}: {r.text}")
                else:
                    raise RuntimeError(f"Replicate create failed {r.status_code}: {r.text}")
            pred_id = r.json()["id"]
            logger.info(f"Replicate prediction created with ID: {pred_id}")

            start = time.monotonic()
            while True:
                s = await client.get(f"{API_BASE}/predictions/{pred_id}", headers=self._headers())
                if s.status_code >= 400:
                    logger.error(f"Replicate status failed {s.status_code}: {s.text}")
                    raise RuntimeError(f"Replicate status failed {s.status_code}: {s.text}")
                body = s.json()
                status = body.get("status")
                logger.info(f"Replicate prediction {pred_id} status: {status}")

                if status in ("succeeded", "failed", "canceled"):
                    if status != "succeeded":
                        error_detail = body.get("error")
                        logger.error(f"Replicate failed: {status}. error={error_detail}")
                        raise RuntimeError(f"Replicate failed: {status}. error={error_detail}")
                    output = body.get("output")
                    if isinstance(output, list):
                        output = output[0] if output else None
                    if output:
                        logger.info(f"Replicate prediction succeeded, got output URL: {output}")
                        return output
                    logger.error("Replicate succeeded but no output URL")
                    return None
                if time.monotonic() - start > self.poll_timeout_s:
                    logger.error("Replicate polling timeout")
                    raise TimeoutError("Replicate polling timeout")
                await asyncio.sleep(self.poll_interval_s)
