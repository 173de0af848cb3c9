from __future__ import annotations

from contextlib import aclosing
from typing import Any, AsyncIterator

from retort.core.errors import ProviderError
from retort.providers.base import HTTPProviderAdapter, LLMResult, ProviderRuntimeConfig, as_int

LABEL = "OpenAI"
SSE_DONE = "[DONE]"


class OpenAIAdapter(HTTPProviderAdapter):
    """OpenAI-compatible ``/v1/chat/completions`` endpoints."""

    async def generate(
        self, cfg: ProviderRuntimeConfig, messages: list[dict], system: str | None = None
    ) -> LLMResult:
        body = await self._post_json(
            self._url(cfg), self._payload(cfg, messages, system), headers=self._auth(cfg)
        )
        choices = body.get("choices") or []
        text = (choices[0].get("message") or {}).get("content") if choices else None
        if not text:
            raise ProviderError("PROVIDER_PARSE_ERROR", "Provider returned empty content.")
        usage = body.get("usage") or {}
        return LLMResult(
            text=text,
            provider=cfg.provider,
            model=cfg.model,
            prompt_tokens=as_int(usage.get("prompt_tokens")),
            completion_tokens=as_int(usage.get("completion_tokens")),
        )

    async def stream(
        self, cfg: ProviderRuntimeConfig, messages: list[dict], system: str | None = None
    ) -> AsyncIterator[str]:
        payload = self._payload(cfg, messages, system)
        payload["stream"] = True
        lines = self._stream_lines(self._url(cfg), payload, headers=self._auth(cfg))
        async with aclosing(lines):
            async for line in lines:
                data = self._sse_data(line)
                if data == SSE_DONE:
                    return
                chunk = self._decode_chunk(data, LABEL) if data else None
                for choice in (chunk or {}).get("choices") or []:
                    text = (choice.get("delta") or {}).get("content")
                    if text:
                        yield text

    @staticmethod
    def _url(cfg: ProviderRuntimeConfig) -> str:
        return cfg.endpoint("/v1/chat/completions", LABEL, version_prefix="/v1")

    @staticmethod
    def _auth(cfg: ProviderRuntimeConfig) -> dict[str, str]:
        return {"Authorization": f"Bearer {cfg.require_key(LABEL)}"}

    @staticmethod
    def _payload(
        cfg: ProviderRuntimeConfig, messages: list[dict], system: str | None
    ) -> dict[str, Any]:
        chat = [{"role": "system", "content": system}] if system else []
        chat.extend(messages)
        payload: dict[str, Any] = {"model": cfg.model, "messages": chat}
        if cfg.max_tokens:
            payload["max_tokens"] = cfg.max_tokens
        if cfg.temperature is not None:
            payload["temperature"] = cfg.temperature
        return payload
