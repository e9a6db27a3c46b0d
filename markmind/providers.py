"""
AI providers - one completion interface over a closed set of backends.

Providers:
- none: AI disabled
- local: on-device processing only; has no completion model
- openai, anthropic, gemini: remote HTTP APIs reached through httpx

Every provider exposes `async complete(prompt) -> CompletionResponse`.
Transport failures surface as TransientProviderError, bad responses as
ProviderError or MalformedResponseError.
"""

import json
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

import httpx

from .errors import (
    MalformedResponseError,
    ProviderError,
    ProviderUnavailableError,
    TransientProviderError,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


class ProviderKind(str, Enum):
    NONE = "none"
    LOCAL = "local"
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GEMINI = "gemini"


@dataclass
class Prompt:
    system_prompt: str
    user_prompt: str
    max_tokens: int = 1000
    temperature: float = 0.7


@dataclass
class CompletionResponse:
    content: str
    model: str = ""
    finish_reason: str = ""
    usage: Dict[str, int] = field(default_factory=dict)


class AIProvider(ABC):
    """Capability interface shared by every backend."""

    kind: ProviderKind

    def __init__(self, api_key: Optional[str] = None):
        self.api_key = api_key or ""

    @property
    def is_remote(self) -> bool:
        return False

    def is_available(self) -> bool:
        return False

    @abstractmethod
    async def complete(self, prompt: Prompt) -> CompletionResponse:
        """Run one completion."""


class NoneProvider(AIProvider):
    kind = ProviderKind.NONE

    async def complete(self, prompt: Prompt) -> CompletionResponse:
        raise ProviderUnavailableError("No AI provider configured")


class LocalProvider(AIProvider):
    """Local processing; features fall back to on-device algorithms."""
    kind = ProviderKind.LOCAL

    def is_available(self) -> bool:
        return True

    async def complete(self, prompt: Prompt) -> CompletionResponse:
        raise ProviderUnavailableError("Local provider has no completion model")


class HTTPProvider(AIProvider):
    """Shared httpx transport for the remote backends."""

    endpoint: str = ""
    model: str = ""

    def __init__(
        self,
        api_key: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        super().__init__(api_key)
        self._client = client
        self.timeout = timeout

    @property
    def is_remote(self) -> bool:
        return True

    def is_available(self) -> bool:
        return len(self.api_key) > 0

    def _headers(self) -> Dict[str, str]:
        return {"Content-Type": "application/json"}

    def _url(self) -> str:
        return self.endpoint

    @abstractmethod
    def _payload(self, prompt: Prompt) -> Dict[str, Any]:
        """Request body for this backend."""

    @abstractmethod
    def _parse(self, data: Dict[str, Any]) -> CompletionResponse:
        """Turn the backend's JSON body into a CompletionResponse."""

    async def _post(self, client: httpx.AsyncClient, prompt: Prompt) -> httpx.Response:
        return await client.post(
            self._url(),
            headers=self._headers(),
            json=self._payload(prompt),
            timeout=self.timeout,
        )

    async def complete(self, prompt: Prompt) -> CompletionResponse:
        if not self.is_available():
            raise ProviderUnavailableError(f"{self.kind.value} provider has no API key")

        try:
            if self._client is not None:
                response = await self._post(self._client, prompt)
            else:
                async with httpx.AsyncClient() as client:
                    response = await self._post(client, prompt)
        except httpx.TimeoutException as e:
            raise TransientProviderError(f"{self.kind.value} request timed out") from e
        except httpx.HTTPError as e:
            raise TransientProviderError(f"{self.kind.value} request failed: {e}") from e

        if response.status_code >= 500 or response.status_code == 429:
            raise TransientProviderError(
                f"{self.kind.value} API error: {response.status_code}"
            )
        if response.status_code >= 400:
            raise ProviderError(f"{self.kind.value} API error: {response.status_code}")

        try:
            return self._parse(response.json())
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise MalformedResponseError(
                f"Unexpected {self.kind.value} response shape: {e}"
            ) from e


class OpenAIProvider(HTTPProvider):
    kind = ProviderKind.OPENAI
    endpoint = "https://api.openai.com/v1/chat/completions"
    model = "gpt-4-turbo-preview"

    def _headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }

    def _payload(self, prompt: Prompt) -> Dict[str, Any]:
        return {
            "model": self.model,
            "messages": [
                {"role": "system", "content": prompt.system_prompt},
                {"role": "user", "content": prompt.user_prompt},
            ],
            "max_tokens": prompt.max_tokens,
            "temperature": prompt.temperature,
        }

    def _parse(self, data: Dict[str, Any]) -> CompletionResponse:
        choice = data["choices"][0]
        usage = data.get("usage") or {}
        return CompletionResponse(
            content=choice["message"]["content"],
            model=data.get("model", self.model),
            finish_reason=choice.get("finish_reason", ""),
            usage={
                "prompt_tokens": usage.get("prompt_tokens", 0),
                "completion_tokens": usage.get("completion_tokens", 0),
                "total_tokens": usage.get("total_tokens", 0),
            },
        )


class AnthropicProvider(HTTPProvider):
    kind = ProviderKind.ANTHROPIC
    endpoint = "https://api.anthropic.com/v1/messages"
    model = "claude-3-5-sonnet-20241022"

    def _headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "x-api-key": self.api_key,
            "anthropic-version": "2023-06-01",
        }

    def _payload(self, prompt: Prompt) -> Dict[str, Any]:
        return {
            "model": self.model,
            "max_tokens": prompt.max_tokens,
            "system": prompt.system_prompt,
            "messages": [{"role": "user", "content": prompt.user_prompt}],
            "temperature": prompt.temperature,
        }

    def _parse(self, data: Dict[str, Any]) -> CompletionResponse:
        usage = data.get("usage") or {}
        input_tokens = usage.get("input_tokens", 0)
        output_tokens = usage.get("output_tokens", 0)
        return CompletionResponse(
            content=data["content"][0]["text"],
            model=data.get("model", self.model),
            finish_reason=data.get("stop_reason", ""),
            usage={
                "prompt_tokens": input_tokens,
                "completion_tokens": output_tokens,
                "total_tokens": input_tokens + output_tokens,
            },
        )


class GeminiProvider(HTTPProvider):
    kind = ProviderKind.GEMINI
    endpoint = "https://generativelanguage.googleapis.com/v1beta/models/gemini-pro:generateContent"
    model = "gemini-pro"

    def _headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "x-goog-api-key": self.api_key,
        }

    def _payload(self, prompt: Prompt) -> Dict[str, Any]:
        return {
            "contents": [{
                "parts": [{"text": f"{prompt.system_prompt}\n\n{prompt.user_prompt}"}]
            }],
            "generationConfig": {
                "temperature": prompt.temperature,
                "maxOutputTokens": prompt.max_tokens,
            },
        }

    def _parse(self, data: Dict[str, Any]) -> CompletionResponse:
        candidate = data["candidates"][0]
        usage = data.get("usageMetadata") or {}
        return CompletionResponse(
            content=candidate["content"]["parts"][0]["text"],
            model=self.model,
            finish_reason=candidate.get("finishReason", ""),
            usage={
                "prompt_tokens": usage.get("promptTokenCount", 0),
                "completion_tokens": usage.get("candidatesTokenCount", 0),
                "total_tokens": usage.get("totalTokenCount", 0),
            },
        )


_CODE_FENCE = re.compile(r"```(?:json)?\n?")


def parse_json_content(content: str) -> Any:
    """Parse a JSON completion, tolerating markdown code fences around it."""
    cleaned = _CODE_FENCE.sub("", content or "").strip()
    try:
        return json.loads(cleaned)
    except ValueError as e:
        raise MalformedResponseError(f"Completion is not valid JSON: {e}") from e


_PROVIDERS = {
    ProviderKind.NONE: NoneProvider,
    ProviderKind.LOCAL: LocalProvider,
    ProviderKind.OPENAI: OpenAIProvider,
    ProviderKind.ANTHROPIC: AnthropicProvider,
    ProviderKind.GEMINI: GeminiProvider,
}


def create_provider(
    kind: Any,
    api_key: Optional[str] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> AIProvider:
    """
    Build the provider for an explicit kind.

    Args:
        kind: ProviderKind or its string value
        api_key: Credential for remote providers
        client: Optional shared httpx client (remote providers only)
    """
    kind = ProviderKind(kind)
    provider_cls = _PROVIDERS[kind]
    if issubclass(provider_cls, HTTPProvider):
        return provider_cls(api_key=api_key, client=client)
    return provider_cls(api_key=api_key)
