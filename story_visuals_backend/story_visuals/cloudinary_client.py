"""
Cloudinary signed uploads over the REST API.
Generated scene images are stored here and served by their secure_url.
"""
import base64
import hashlib
import time
import httpx
import logging
from typing import Dict
from .settings import CLOUDINARY_CLOUD_NAME, CLOUDINARY_API_KEY, CLOUDINARY_API_SECRET, CLOUDINARY_FOLDER

logger = logging.getLogger(__name__)


class AssetUploadError(Exception):
    """Raised when an image cannot be stored in Cloudinary."""


def sign_params(params: Dict[str, str], api_secret: str) -> str:
    to_sign = "&".join(f"{k}={params[k]}" for k in sorted(params) if params[k] not in (None, ""))
    return hashlib.sha1(f"{to_sign}{api_secret}".encode("utf-8")).hexdigest()


class CloudinaryStorage:
    def __init__(self, cloud_name: str = None, api_key: str = None, api_secret: str = None,
                 folder: str = None, transport: httpx.AsyncBaseTransport = None):
        self.cloud_name = cloud_name or CLOUDINARY_CLOUD_NAME
        self.api_key = api_key or CLOUDINARY_API_KEY
        self.api_secret = api_secret or CLOUDINARY_API_SECRET
        self.folder = folder or CLOUDINARY_FOLDER
        self.transport = transport

    @property
    def upload_url(self) -> str:
        return f"https://api.cloudinary.com/v1_1/{self.cloud_name}/image/upload"

    async def upload(self, image_data: bytes, key_hint: str, mime_type: str = "image/jpeg") -> str:
        """Upload image bytes under folder/key_hint and return the public https URL."""
        if not (self.cloud_name and self.api_key and self.api_secret):
            raise AssetUploadError("Cloudinary is not configured; set CLOUDINARY_CLOUD_NAME/API_KEY/API_SECRET")

        params = {
            "folder": self.folder,
            "public_id": key_hint,
            "timestamp": str(int(time.time())),
        }
        form = {
            **params,
            "api_key": self.api_key,
            "signature": sign_params(params, self.api_secret),
            "file": f"data:{mime_type};base64,{base64.b64encode(image_data).decode('ascii')}",
        }
        try:
            async with httpx.AsyncClient(timeout=60, transport=self.transport) as client:
                response = await client.post(self.upload_url, data=form)
                response.raise_for_status()
                secure_url = response.json().get("secure_url")
        except httpx.HTTPError as e:
            logger.error(f"Cloudinary upload failed for {key_hint}: {e}")
            raise AssetUploadError(f"Cloudinary upload failed: {e}") from e

        if not secure_url:
            raise AssetUploadError("Cloudinary response did not include secure_url")
        logger.info(f"Uploaded {key_hint} to Cloudinary: {secure_url[:60]}...")
        return secure_url
