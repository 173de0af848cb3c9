from __future__ import annotations

from contextlib import aclosing
from typing import Any, AsyncIterator

from retort.core.errors import ProviderError
from retort.providers.base import HTTPProviderAdapter, LLMResult, ProviderRuntimeConfig, as_int

LABEL = "Ollama"


class OllamaAdapter(HTTPProviderAdapter):
    """A local Ollama server's ``/api/chat``; streams newline-delimited JSON."""

    async def generate(
        self, cfg: ProviderRuntimeConfig, messages: list[dict], system: str | None = None
    ) -> LLMResult:
        body = await self._post_json(
            cfg.endpoint("/api/chat", LABEL), self._payload(cfg, messages, system, stream=False)
        )
        text = (body.get("message") or {}).get("content")
        if not text:
            raise ProviderError("PROVIDER_PARSE_ERROR", "Provider returned empty content.")
        return LLMResult(
            text=text,
            provider=cfg.provider,
            model=cfg.model,
            prompt_tokens=as_int(body.get("prompt_eval_count")),
            completion_tokens=as_int(body.get("eval_count")),
        )

    async def stream(
        self, cfg: ProviderRuntimeConfig, messages: list[dict], system: str | None = None
    ) -> AsyncIterator[str]:
        lines = self._stream_lines(
            cfg.endpoint("/api/chat", LABEL), self._payload(cfg, messages, system, stream=True)
        )
        async with aclosing(lines):
            async for line in lines:
                chunk = self._decode_chunk(line, LABEL)
                if chunk is None:
                    continue
                if chunk.get("error"):
                    raise ProviderError("PROVIDER_UPSTREAM", str(chunk["error"]))
                text = (chunk.get("message") or {}).get("content")
                if text:
                    yield text
                if chunk.get("done"):
                    return

    @staticmethod
    def _payload(
        cfg: ProviderRuntimeConfig, messages: list[dict], system: str | None, stream: bool
    ) -> dict[str, Any]:
        chat = [{"role": "system", "content": system}] if system else []
        chat.extend(messages)
        options: dict[str, Any] = {}
        if cfg.max_tokens:
            options["num_predict"] = cfg.max_tokens
        if cfg.temperature is not None:
            options["temperature"] = cfg.temperature
        return {"model": cfg.model, "messages": chat, "stream": stream, "options": options}
