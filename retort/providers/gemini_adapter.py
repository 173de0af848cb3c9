from __future__ import annotations

from contextlib import aclosing
from typing import Any, AsyncIterator

from retort.core.errors import ProviderError
from retort.providers.base import HTTPProviderAdapter, LLMResult, ProviderRuntimeConfig, as_int

LABEL = "Gemini"


def candidate_text(body: dict[str, Any]) -> str:
    """Concatenate the text parts of the first candidate."""

    candidates = body.get("candidates") or []
    if not candidates:
        return ""
    parts = (candidates[0].get("content") or {}).get("parts") or []
    return "".join(part["text"] for part in parts if part.get("text"))


class GeminiAdapter(HTTPProviderAdapter):
    """Google Gemini through ``generateContent`` and ``streamGenerateContent``."""

    async def generate(
        self, cfg: ProviderRuntimeConfig, messages: list[dict], system: str | None = None
    ) -> LLMResult:
        body = await self._post_json(
            self._method_url(cfg, "generateContent"),
            self._payload(cfg, messages, system),
            headers={"x-goog-api-key": cfg.require_key(LABEL)},
        )
        if not body.get("candidates"):
            raise ProviderError("PROVIDER_PARSE_ERROR", "No candidates returned by provider.")
        text = candidate_text(body)
        if not text:
            raise ProviderError("PROVIDER_PARSE_ERROR", "Provider returned empty content.")
        usage = body.get("usageMetadata") or {}
        return LLMResult(
            text=text,
            provider=cfg.provider,
            model=cfg.model,
            prompt_tokens=as_int(usage.get("promptTokenCount")),
            completion_tokens=as_int(usage.get("candidatesTokenCount")),
        )

    async def stream(
        self, cfg: ProviderRuntimeConfig, messages: list[dict], system: str | None = None
    ) -> AsyncIterator[str]:
        lines = self._stream_lines(
            self._method_url(cfg, "streamGenerateContent") + "?alt=sse",
            self._payload(cfg, messages, system),
            headers={"x-goog-api-key": cfg.require_key(LABEL)},
        )
        async with aclosing(lines):
            async for line in lines:
                data = self._sse_data(line)
                chunk = self._decode_chunk(data, LABEL) if data else None
                text = candidate_text(chunk) if chunk else ""
                if text:
                    yield text

    @staticmethod
    def _method_url(cfg: ProviderRuntimeConfig, method: str) -> str:
        model = cfg.model if cfg.model.startswith("models/") else f"models/{cfg.model}"
        return cfg.endpoint(f"/v1beta/{model}:{method}", LABEL, version_prefix="/v1beta")

    @staticmethod
    def _payload(
        cfg: ProviderRuntimeConfig, messages: list[dict], system: str | None
    ) -> dict[str, Any]:
        instructions = [system] if system else []
        contents = []
        for message in messages:
            if message["role"] == "system":
                instructions.append(message["content"])
                continue
            # Gemini calls the assistant side "model".
            role = "user" if message["role"] == "user" else "model"
            contents.append({"role": role, "parts": [{"text": message["content"]}]})

        payload: dict[str, Any] = {"contents": contents}
        if instructions:
            payload["system_instruction"] = {"parts": [{"text": "\n\n".join(instructions)}]}
        generation: dict[str, Any] = {}
        if cfg.max_tokens:
            generation["maxOutputTokens"] = cfg.max_tokens
        if cfg.temperature is not None:
            generation["temperature"] = cfg.temperature
        if generation:
            payload["generationConfig"] = generation
        return payload
