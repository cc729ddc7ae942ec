import json

import httpx
import pytest

from metricsqa.ai_feature.llm_client import OllamaClient
from metricsqa.core.exceptions import EmptyCompletion, UpstreamError, UpstreamUnavailable
from metricsqa.core.schemas import SamplingParams


def make_client(handler) -> OllamaClient:
    return OllamaClient(
        base_url="http://llm.test", model="test-model", transport=httpx.MockTransport(handler)
    )


def completion_handler(captured: list, text: str = "ok"):
    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(json.loads(request.content))
        return httpx.Response(200, json={"response": text, "done": True})

    return handler


@pytest.mark.asyncio
async def test_generate_sends_default_sampling_params():
    captured = []
    client = make_client(completion_handler(captured, "Entity: generalMetrics"))

    text = await client.generate("SYSTEM", "What is the availability?")

    assert text == "Entity: generalMetrics"
    assert captured == [
        {
            "model": "test-model",
            "prompt": "SYSTEM\n\nWhat is the availability?",
            "stream": False,
            "temperature": 0.7,
            "top_p": 0.9,
            "top_k": 40,
        }
    ]


@pytest.mark.asyncio
async def test_generate_sends_only_explicit_overrides():
    captured = []
    client = make_client(completion_handler(captured))

    await client.generate("S", "U", SamplingParams(temperature=0.1, top_k=5))

    body = captured[0]
    assert body["temperature"] == 0.1
    assert body["top_k"] == 5
    assert "top_p" not in body


@pytest.mark.asyncio
async def test_generate_posts_to_generate_path():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((request.method, request.url.path))
        return httpx.Response(200, json={"response": "ok"})

    await make_client(handler).generate("S", "U")
    assert seen == [("POST", "/api/generate")]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error", [httpx.ConnectError("connection refused"), httpx.ReadTimeout("timed out")]
)
async def test_transport_failures_are_unavailable(error):
    def handler(request):
        raise error

    with pytest.raises(UpstreamUnavailable):
        await make_client(handler).generate("S", "U")


@pytest.mark.asyncio
async def test_error_status_is_upstream_error():
    client = make_client(lambda request: httpx.Response(500, text="model crashed"))

    with pytest.raises(UpstreamError) as excinfo:
        await client.generate("S", "U")
    assert excinfo.value.status_code == 500


@pytest.mark.asyncio
async def test_undecodable_body_is_upstream_error():
    def handler(request):
        raise httpx.DecodingError("invalid gzip stream")

    with pytest.raises(UpstreamError):
        await make_client(handler).generate("S", "U")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(200, text="not json at all"),
        httpx.Response(200, json=["a", "list"]),
    ],
)
async def test_unusable_body_is_upstream_error(response):
    with pytest.raises(UpstreamError):
        await make_client(lambda request: response).generate("S", "U")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body", [{"done": True}, {"response": None}, {"response": "   "}]
)
async def test_missing_text_is_empty_completion(body):
    client = make_client(lambda request: httpx.Response(200, json=body))

    with pytest.raises(EmptyCompletion):
        await client.generate("S", "U")


@pytest.mark.asyncio
async def test_is_available_probes_tags():
    seen = []

    def handler(request):
        seen.append((request.method, request.url.path))
        return httpx.Response(200, json={"models": []})

    assert await make_client(handler).is_available() is True
    assert seen == [("GET", "/api/tags")]


@pytest.mark.asyncio
async def test_is_available_swallows_failures():
    def refuse(request):
        raise httpx.ConnectError("connection refused")

    assert await make_client(refuse).is_available() is False
    assert await make_client(lambda r: httpx.Response(503)).is_available() is False


@pytest.mark.asyncio
async def test_list_models():
    listing = {"models": [{"name": "qwen2.5-coder:3b"}]}
    client = make_client(lambda request: httpx.Response(200, json=listing))
    assert await client.list_models() == listing
