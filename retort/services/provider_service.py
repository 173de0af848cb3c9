from __future__ import annotations

from typing import Optional

from retort.core.config import Settings, get_settings
from retort.core.errors import ProviderError
from retort.providers.base import LLMAdapter, MockAdapter, ProviderRuntimeConfig
from retort.providers.gemini_adapter import GeminiAdapter
from retort.providers.ollama_adapter import OllamaAdapter
from retort.providers.openai_adapter import OpenAIAdapter

SUPPORTED_PROVIDERS = ("gemini", "openai", "ollama")

DEFAULT_BASE_URLS = {
    "gemini": "https://generativelanguage.googleapis.com",
    "openai": "https://api.openai.com",
    "ollama": "http://localhost:11434",
}

# Settings attribute holding each hosted provider's key; ollama needs none.
KEY_SETTINGS = {"gemini": "google_api_key", "openai": "openai_api_key"}


class ProviderService:
    """Resolves which adapter answers a prompt, and with what settings."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        adapters: Optional[dict[str, LLMAdapter]] = None,
    ) -> None:
        self._settings = settings or get_settings()
        if adapters is None:
            timeout = self._settings.llm_timeout_sec
            adapters = {
                "gemini": GeminiAdapter(timeout_sec=timeout),
                "openai": OpenAIAdapter(timeout_sec=timeout),
                "ollama": OllamaAdapter(timeout_sec=timeout),
            }
        self._adapters = adapters

    def set_adapters(self, adapters: dict[str, LLMAdapter]) -> None:
        self._adapters = adapters

    def get_generation_config(self) -> tuple[LLMAdapter, ProviderRuntimeConfig]:
        settings = self._settings
        if settings.mock_enabled():
            return (
                MockAdapter(settings.mock_llm_content),
                ProviderRuntimeConfig(provider="mock", model=settings.llm_model),
            )

        name = settings.llm_provider.strip().lower()
        if name not in SUPPORTED_PROVIDERS or name not in self._adapters:
            raise ProviderError(
                "PROVIDER_UNSUPPORTED", f"Unsupported provider: {settings.llm_provider}"
            )
        cfg = ProviderRuntimeConfig(
            provider=name,
            model=settings.llm_model,
            base_url=settings.llm_base_url or DEFAULT_BASE_URLS[name],
            api_key=self._key_for(name),
            max_tokens=settings.llm_max_tokens,
            temperature=settings.llm_temperature,
        )
        return self._adapters[name], cfg

    def _key_for(self, provider: str) -> Optional[str]:
        attr = KEY_SETTINGS.get(provider)
        if attr is None:
            return None
        key = getattr(self._settings, attr)
        if not key:
            raise ProviderError("API_KEY_REQUIRED", f"API key is required for {provider}.")
        return key
