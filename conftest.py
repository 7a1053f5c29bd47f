"""Shared pytest fixtures: fake image provider and asset storage."""
import asyncio
import io

import pytest
from PIL import Image


def png_bytes(size=(64, 48), color=(200, 120, 40, 255)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGBA", size, color).save(buf, format="PNG")
    return buf.getvalue()


class FakeProvider:
    """Returns a PNG for every prompt unless the prompt mentions a configured trigger."""

    name = "fake"

    def __init__(self, fail_on=(), empty_on=(), hang_on=(), delay=0.0):
        self.fail_on = fail_on
        self.empty_on = empty_on
        self.hang_on = hang_on
        self.delay = delay
        self.calls = []
        self.active = 0
        self.max_active = 0

    async def generate(self, prompt, reference_image_url):
        self.calls.append((prompt, reference_image_url))
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if any(t in prompt for t in self.hang_on):
                await asyncio.sleep(3600)
            if self.delay:
                await asyncio.sleep(self.delay)
            if any(t in prompt for t in self.fail_on):
                raise RuntimeError("provider exploded")
            if any(t in prompt for t in self.empty_on):
                return None
            return png_bytes()
        finally:
            self.active -= 1


class FakeStorage:
    def __init__(self, fail=False):
        self.fail = fail
        self.uploads = []

    async def upload(self, image_data, key_hint):
        if self.fail:
            from story_visuals.cloudinary_client import AssetUploadError
            raise AssetUploadError("storage offline")
        self.uploads.append((key_hint, image_data))
        return f"https://res.cloudinary.com/demo/image/upload/story_gen_images/{key_hint}.jpg"


@pytest.fixture()
def fake_provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture()
def fake_storage() -> FakeStorage:
    return FakeStorage()
