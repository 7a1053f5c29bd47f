"""Unit tests for the Replicate provider against a mocked HTTP API."""
import json

import httpx
import pytest

from story_visuals.replicate_client import ReplicateImageProvider, _parse_selector


def test_parse_selector() -> None:
    assert _parse_selector("black-forest-labs/flux-kontext-pro") == (
        "model",
        {"owner": "black-forest-labs", "name": "flux-kontext-pro"},
    )
    assert _parse_selector("owner/name:latest") == ("model", {"owner": "owner", "name": "name"})
    assert _parse_selector("5c7d5dc6dd8bf75c1acaa8565735e7986bc5b66206b55cca93cb72c9bf15ccaa") == (
        "version",
        {"version": "5c7d5dc6dd8bf75c1acaa8565735e7986bc5b66206b55cca93cb72c9bf15ccaa"},
    )


def _provider(handler, **kwargs) -> ReplicateImageProvider:
    return ReplicateImageProvider(
        token="r8_test",
        selector="black-forest-labs/flux-kontext-pro",
        transport=httpx.MockTransport(handler),
        poll_interval_s=0,
        poll_timeout_s=kwargs.pop("poll_timeout_s", 5),
    )


@pytest.mark.asyncio
async def test_generate_creates_polls_and_downloads() -> None:
    polls = {"n": 0}
    created = {}

    def handler(request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        if request.method == "POST":
            created["url"] = url
            created["body"] = json.loads(request.content)
            assert request.headers["Authorization"] == "Token r8_test"
            return httpx.Response(201, json={"id": "pred-1", "status": "starting"})
        if url.endswith("/predictions/pred-1"):
            polls["n"] += 1
            if polls["n"] < 2:
                return httpx.Response(200, json={"status": "processing"})
            return httpx.Response(200, json={"status": "succeeded", "output": "https://replicate.delivery/out.png"})
        if url == "https://replicate.delivery/out.png":
            return httpx.Response(200, content=b"PNGDATA")
        return httpx.Response(404)

    data = await _provider(handler).generate("a prompt", "https://example.com/amina.jpg")

    assert data == b"PNGDATA"
    assert created["url"].endswith("/models/black-forest-labs/flux-kontext-pro/predictions")
    assert created["body"]["input"]["input_image"] == "https://example.com/amina.jpg"
    assert created["body"]["input"]["prompt"] == "a prompt"
    assert polls["n"] == 2


@pytest.mark.asyncio
async def test_failed_prediction_raises() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            return httpx.Response(201, json={"id": "pred-2"})
        return httpx.Response(200, json={"status": "failed", "error": "NSFW"})

    with pytest.raises(RuntimeError, match="NSFW"):
        await _provider(handler).generate("a prompt", "https://example.com/amina.jpg")


@pytest.mark.asyncio
async def test_succeeded_without_output_returns_none() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            return httpx.Response(201, json={"id": "pred-3"})
        return httpx.Response(200, json={"status": "succeeded", "output": []})

    assert await _provider(handler).generate("a prompt", "https://example.com/amina.jpg") is None


@pytest.mark.asyncio
async def test_polling_times_out() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            return httpx.Response(201, json={"id": "pred-4"})
        return httpx.Response(200, json={"status": "processing"})

    with pytest.raises(TimeoutError):
        await _provider(handler, poll_timeout_s=0).generate("a prompt", "https://example.com/amina.jpg")


@pytest.mark.asyncio
async def test_missing_token_raises() -> None:
    provider = ReplicateImageProvider(token="", transport=httpx.MockTransport(lambda r: httpx.Response(500)))
    with pytest.raises(RuntimeError, match="REPLICATE_API_TOKEN"):
        await provider.generate("a prompt", "https://example.com/amina.jpg")


@pytest.mark.asyncio
async def test_model_404_falls_back_to_latest_version() -> None:
    created = []

    def handler(request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        if request.method == "POST" and url.endswith("/models/black-forest-labs/flux-kontext-pro/predictions"):
            return httpx.Response(404, json={"detail": "not found"})
        if request.method == "GET" and url.endswith("/models/black-forest-labs/flux-kontext-pro"):
            return httpx.Response(200, json={"latest_version": {"id": "v123"}})
        if request.method == "POST" and url.endswith("/v1/predictions"):
            created.append(json.loads(request.content))
            return httpx.Response(201, json={"id": "pred-5"})
        if url.endswith("/predictions/pred-5"):
            return httpx.Response(200, json={"status": "succeeded", "output": ["https://replicate.delivery/v.png"]})
        if url == "https://replicate.delivery/v.png":
            return httpx.Response(200, content=b"PNGDATA")
        return httpx.Response(500)

    data = await _provider(handler).generate("a prompt", "https://example.com/amina.jpg")

    assert data == b"PNGDATA"
    assert created[0]["version"] == "v123"
    assert created[0]["input"]["input_image"] == "https://example.com/amina.jpg"


@pytest.mark.asyncio
async def test_model_404_without_latest_version_raises() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            return httpx.Response(404, json={"detail": "not found"})
        return httpx.Response(200, json={"latest_version": None})

    with pytest.raises(RuntimeError, match="latest version"):
        await _provider(handler).generate("a prompt", "https://example.com/amina.jpg")
