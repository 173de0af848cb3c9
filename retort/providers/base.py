from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Optional, Protocol

import httpx

from retort.core.errors import ProviderError

logger = logging.getLogger(__name__)

MOCK_RESPONSE = "This is a mocked response."

# Statuses worth retrying by the caller, with the code they map to.
RETRYABLE_STATUSES = {408: "PROVIDER_TIMEOUT", 429: "PROVIDER_RATE_LIMIT"}


@dataclass
class ProviderRuntimeConfig:
    """Model, endpoint and sampling settings for one request."""

    provider: str
    model: str
    base_url: Optional[str] = None
    api_key: Optional[str] = None
    max_tokens: Optional[int] = None
    temperature: Optional[float] = None

    def require_key(self, label: str) -> str:
        if not self.api_key:
            raise ProviderError("API_KEY_REQUIRED", f"API key is required for {label}.")
        return self.api_key

    def endpoint(self, path: str, label: str, version_prefix: str = "") -> str:
        """Append ``path`` to the base URL, tolerating a base that already ends in the version."""

        if not self.base_url:
            raise ProviderError("PROVIDER_BASE_URL_MISSING", f"Base URL is required for {label}.")
        base = self.base_url.rstrip("/")
        if version_prefix and base.endswith(version_prefix) and path.startswith(f"{version_prefix}/"):
            path = path[len(version_prefix):]
        return base + path


@dataclass
class LLMResult:
    """A complete model answer."""

    text: str
    provider: str
    model: str
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None


class LLMAdapter(Protocol):
    """What the chat service needs from a model provider."""

    async def generate(
        self, cfg: ProviderRuntimeConfig, messages: list[dict], system: str | None = None
    ) -> LLMResult:
        """Return the whole answer at once."""

    def stream(
        self, cfg: ProviderRuntimeConfig, messages: list[dict], system: str | None = None
    ) -> AsyncIterator[str]:
        """Yield answer text as the provider produces it."""


def as_int(value: Any) -> Optional[int]:
    return value if isinstance(value, int) else None


def error_detail(response: httpx.Response) -> str:
    """Pick the most useful human-readable message out of an error body."""

    fallback = (response.text or "").strip() or "Unknown error from provider."
    try:
        body = response.json()
    except ValueError:
        return fallback
    if not isinstance(body, dict):
        return fallback

    error = body.get("error")
    candidates = [error, body.get("message")]
    if isinstance(error, dict):
        candidates = [error.get("message"), error.get("code"), body.get("message")]
    for candidate in candidates:
        if isinstance(candidate, str) and candidate.strip():
            return candidate.strip()
    return fallback


def error_from_response(response: httpx.Response) -> ProviderError:
    status = response.status_code
    text = f"Provider returned {status}: {error_detail(response)}"
    if status in RETRYABLE_STATUSES:
        return ProviderError(RETRYABLE_STATUSES[status], text, retryable=True, status_code=status)
    if status >= 500:
        return ProviderError("PROVIDER_UPSTREAM", text, retryable=True, status_code=status)
    return ProviderError("PROVIDER_BAD_STATUS", text, status_code=status)


class HTTPProviderAdapter:
    """Base for adapters that POST JSON and read JSON, SSE or NDJSON back."""

    def __init__(
        self, timeout_sec: float = 90, http_client: Optional[httpx.AsyncClient] = None
    ) -> None:
        self._timeout = timeout_sec
        self._http_client = http_client

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[httpx.AsyncClient]:
        """Yield the injected client or a short-lived one; transport failures become ProviderError."""

        try:
            if self._http_client is not None:
                yield self._http_client
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    yield client
        except httpx.TimeoutException as exc:
            raise ProviderError(
                "PROVIDER_TIMEOUT", "Provider request timed out.", retryable=True
            ) from exc
        except httpx.RequestError as exc:
            raise ProviderError(
                "PROVIDER_CONNECTION_ERROR", f"Could not reach provider: {exc}", retryable=True
            ) from exc

    async def _post_json(
        self, url: str, payload: dict[str, Any], headers: Optional[dict[str, str]] = None
    ) -> dict[str, Any]:
        async with self._session() as client:
            response = await client.post(url, json=payload, headers=headers, timeout=self._timeout)
        if response.is_error:
            raise error_from_response(response)
        try:
            body = response.json()
        except ValueError as exc:
            raise ProviderError("PROVIDER_PARSE_ERROR", "Provider returned invalid JSON.") from exc
        if not isinstance(body, dict):
            raise ProviderError("PROVIDER_PARSE_ERROR", "Provider returned a non-object JSON body.")
        return body

    async def _stream_lines(
        self, url: str, payload: dict[str, Any], headers: Optional[dict[str, str]] = None
    ) -> AsyncIterator[str]:
        """POST ``payload`` and yield each non-blank line of the streamed body."""

        async with self._session() as client:
            async with client.stream(
                "POST", url, json=payload, headers=headers, timeout=self._timeout
            ) as response:
                if response.is_error:
                    await response.aread()
                    raise error_from_response(response)
                async for line in response.aiter_lines():
                    if line.strip():
                        yield line

    @staticmethod
    def _sse_data(line: str) -> Optional[str]:
        if not line.startswith("data:"):
            return None
        return line[5:].strip()

    @staticmethod
    def _decode_chunk(raw: str, label: str) -> Optional[dict[str, Any]]:
        try:
            chunk = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Skipping malformed %s stream chunk", label)
            return None
        return chunk if isinstance(chunk, dict) else None


class MockAdapter:
    """Answers every prompt with canned text and never opens a connection."""

    def __init__(self, content: str | None = None) -> None:
        self._content = MOCK_RESPONSE if content is None else content

    async def generate(
        self, cfg: ProviderRuntimeConfig, messages: list[dict], system: str | None = None
    ) -> LLMResult:
        return LLMResult(text=self._content, provider="mock", model=cfg.model or "mock")

    async def stream(
        self, cfg: ProviderRuntimeConfig, messages: list[dict], system: str | None = None
    ) -> AsyncIterator[str]:
        for line in self._content.splitlines(keepends=True):
            yield line
