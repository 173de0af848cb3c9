from __future__ import annotations

import json

import httpx
import pytest

from retort.core.errors import ProviderError
from retort.providers.base import MOCK_RESPONSE, MockAdapter, ProviderRuntimeConfig
from retort.providers.gemini_adapter import GeminiAdapter
from retort.providers.ollama_adapter import OllamaAdapter
from retort.providers.openai_adapter import OpenAIAdapter

GEMINI_BASE = "https://generativelanguage.googleapis.com"


def gemini_cfg(api_key: str | None = "AIza-test-key") -> ProviderRuntimeConfig:
    return ProviderRuntimeConfig(
        provider="gemini",
        model="gemini-test",
        base_url=GEMINI_BASE,
        api_key=api_key,
        max_tokens=128,
        temperature=0.5,
    )


async def collect(iterator) -> list[str]:
    return [chunk async for chunk in iterator]


@pytest.mark.anyio
async def test_gemini_adapter_generate():
    seen: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["key"] = request.headers.get("x-goog-api-key")
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "candidates": [{"content": {"parts": [{"text": "hello "}, {"text": "gemini"}]}}],
                "usageMetadata": {"promptTokenCount": 9, "candidatesTokenCount": 2},
            },
        )

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(transport=transport) as client:
        adapter = GeminiAdapter(http_client=client)
        result = await adapter.generate(
            gemini_cfg(),
            [
                {"role": "user", "content": "hi"},
                {"role": "assistant", "content": "hello"},
                {"role": "user", "content": "again"},
            ],
            system="be brief",
        )

    assert result.text == "hello gemini"
    assert result.prompt_tokens == 9
    assert result.completion_tokens == 2
    assert seen["path"] == "/v1beta/models/gemini-test:generateContent"
    assert seen["key"] == "AIza-test-key"
    assert [item["role"] for item in seen["body"]["contents"]] == ["user", "model", "user"]
    assert seen["body"]["system_instruction"] == {"parts": [{"text": "be brief"}]}
    assert seen["body"]["generationConfig"] == {"maxOutputTokens": 128, "temperature": 0.5}


@pytest.mark.anyio
async def test_gemini_adapter_stream():
    body = (
        'data: {"candidates": [{"content": {"parts": [{"text": "Hel"}]}}]}\n\n'
        'data: {"candidates": [{"content": {"parts": [{"text": "lo"}]}}]}\n\n'
    )

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/v1beta/models/gemini-test:streamGenerateContent"
        assert request.url.params["alt"] == "sse"
        return httpx.Response(200, content=body.encode("utf-8"))

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(transport=transport) as client:
        adapter = GeminiAdapter(http_client=client)
        chunks = await collect(adapter.stream(gemini_cfg(), [{"role": "user", "content": "hi"}]))

    assert chunks == ["Hel", "lo"]


@pytest.mark.anyio
async def test_gemini_adapter_requires_api_key():
    adapter = GeminiAdapter()
    with pytest.raises(ProviderError) as exc_info:
        await adapter.generate(gemini_cfg(api_key=None), [{"role": "user", "content": "hi"}])
    assert exc_info.value.code == "API_KEY_REQUIRED"


@pytest.mark.anyio
async def test_gemini_adapter_rate_limit_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, json={"error": {"message": "quota exceeded"}})

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(transport=transport) as client:
        adapter = GeminiAdapter(http_client=client)
        with pytest.raises(ProviderError) as exc_info:
            await adapter.generate(gemini_cfg(), [{"role": "user", "content": "hi"}])
        with pytest.raises(ProviderError) as stream_exc_info:
            await collect(adapter.stream(gemini_cfg(), [{"role": "user", "content": "hi"}]))

    assert exc_info.value.code == "PROVIDER_RATE_LIMIT"
    assert exc_info.value.retryable
    assert "quota exceeded" in exc_info.value.message
    assert stream_exc_info.value.status_code == 429


@pytest.mark.anyio
async def test_openai_adapter_generate_and_stream():
    stream_body = (
        'data: {"choices": [{"delta": {"role": "assistant"}}]}\n\n'
        'data: {"choices": [{"delta": {"content": "hello "}}]}\n\n'
        'data: {"choices": [{"delta": {"content": "openai"}}]}\n\n'
        "data: [DONE]\n\n"
    )

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/v1/chat/completions"
        assert request.headers["authorization"] == "Bearer sk-test-key"
        payload = json.loads(request.content)
        assert payload["messages"][0] == {"role": "system", "content": "sys"}
        if payload.get("stream"):
            return httpx.Response(200, content=stream_body.encode("utf-8"))
        return httpx.Response(
            200,
            json={
                "choices": [{"message": {"content": "hello openai"}}],
                "usage": {"prompt_tokens": 5, "completion_tokens": 7},
            },
        )

    transport = httpx.MockTransport(handler)
    cfg = ProviderRuntimeConfig(
        provider="openai",
        model="gpt-test",
        base_url="https://api.openai.com/v1",
        api_key="sk-test-key",
    )
    async with httpx.AsyncClient(transport=transport) as client:
        adapter = OpenAIAdapter(http_client=client)
        result = await adapter.generate(cfg, [{"role": "user", "content": "hi"}], system="sys")
        chunks = await collect(adapter.stream(cfg, [{"role": "user", "content": "hi"}], system="sys"))

    assert result.text == "hello openai"
    assert result.prompt_tokens == 5
    assert result.completion_tokens == 7
    assert chunks == ["hello ", "openai"]


@pytest.mark.anyio
async def test_ollama_adapter_generate_and_stream():
    stream_body = (
        '{"message": {"content": "hello "}, "done": false}\n'
        '{"message": {"content": "ollama"}, "done": false}\n'
        '{"message": {"content": ""}, "done": true}\n'
    )

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/chat"
        payload = json.loads(request.content)
        assert payload["options"] == {"num_predict": 64, "temperature": 0.1}
        if payload["stream"]:
            return httpx.Response(200, content=stream_body.encode("utf-8"))
        return httpx.Response(
            200,
            json={"message": {"content": "hello ollama"}, "prompt_eval_count": 3, "eval_count": 4},
        )

    transport = httpx.MockTransport(handler)
    cfg = ProviderRuntimeConfig(
        provider="ollama",
        model="llama3",
        base_url="http://localhost:11434",
        max_tokens=64,
        temperature=0.1,
    )
    async with httpx.AsyncClient(transport=transport) as client:
        adapter = OllamaAdapter(http_client=client)
        result = await adapter.generate(cfg, [{"role": "user", "content": "hi"}])
        chunks = await collect(adapter.stream(cfg, [{"role": "user", "content": "hi"}]))

    assert result.text == "hello ollama"
    assert result.prompt_tokens == 3
    assert result.completion_tokens == 4
    assert chunks == ["hello ", "ollama"]


@pytest.mark.anyio
async def test_mock_adapter_never_touches_network():
    cfg = ProviderRuntimeConfig(provider="mock", model="gemini-2.5-flash")

    default = await MockAdapter().generate(cfg, [])
    assert default.text == MOCK_RESPONSE
    assert default.provider == "mock"

    custom = MockAdapter("line one\nline two")
    assert (await custom.generate(cfg, [])).text == "line one\nline two"
    assert "".join(await collect(custom.stream(cfg, []))) == "line one\nline two"
