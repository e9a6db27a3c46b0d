"""Tests for the AI provider layer (HTTP mocked with httpx.MockTransport)."""

import json

import httpx
import pytest

from markmind.errors import (
    MalformedResponseError,
    ProviderError,
    ProviderUnavailableError,
    TransientProviderError,
)
from markmind.providers import (
    AnthropicProvider,
    GeminiProvider,
    LocalProvider,
    NoneProvider,
    OpenAIProvider,
    Prompt,
    ProviderKind,
    create_provider,
    parse_json_content,
)

PROMPT = Prompt(system_prompt="system", user_prompt="user", max_tokens=100, temperature=0.2)


def mock_client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestCreateProvider:
    """Test explicit provider selection."""

    def test_kinds(self):
        assert isinstance(create_provider("none"), NoneProvider)
        assert isinstance(create_provider(ProviderKind.LOCAL), LocalProvider)
        assert isinstance(create_provider("openai", "k"), OpenAIProvider)
        assert isinstance(create_provider("anthropic", "k"), AnthropicProvider)
        assert isinstance(create_provider("gemini", "k"), GeminiProvider)

    def test_unknown_kind(self):
        with pytest.raises(ValueError):
            create_provider("cohere")

    def test_availability(self):
        assert not create_provider("none").is_available()
        assert create_provider("local").is_available()
        assert not create_provider("openai").is_available()
        assert create_provider("openai", "sk-test").is_available()

    @pytest.mark.asyncio
    async def test_none_and_local_cannot_complete(self):
        with pytest.raises(ProviderUnavailableError):
            await create_provider("none").complete(PROMPT)
        with pytest.raises(ProviderUnavailableError):
            await create_provider("local").complete(PROMPT)

    @pytest.mark.asyncio
    async def test_remote_without_key(self):
        with pytest.raises(ProviderUnavailableError):
            await create_provider("openai").complete(PROMPT)


class TestOpenAI:
    """Test the OpenAI request and response shapes."""

    @pytest.mark.asyncio
    async def test_complete(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={
                "model": "gpt-4-turbo-preview",
                "choices": [{"message": {"content": "[\"a\"]"}, "finish_reason": "stop"}],
                "usage": {"prompt_tokens": 5, "completion_tokens": 2, "total_tokens": 7},
            })

        async with mock_client(handler) as client:
            provider = OpenAIProvider(api_key="sk-test", client=client)
            response = await provider.complete(PROMPT)

        assert seen["url"] == "https://api.openai.com/v1/chat/completions"
        assert seen["auth"] == "Bearer sk-test"
        assert seen["body"]["messages"][0] == {"role": "system", "content": "system"}
        assert seen["body"]["messages"][1] == {"role": "user", "content": "user"}
        assert seen["body"]["max_tokens"] == 100
        assert response.content == "[\"a\"]"
        assert response.finish_reason == "stop"
        assert response.usage["total_tokens"] == 7


class TestAnthropic:
    """Test the Anthropic request and response shapes."""

    @pytest.mark.asyncio
    async def test_complete(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["headers"] = request.headers
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={
                "content": [{"type": "text", "text": "hello"}],
                "stop_reason": "end_turn",
                "usage": {"input_tokens": 3, "output_tokens": 4},
            })

        async with mock_client(handler) as client:
            provider = AnthropicProvider(api_key="ak", client=client)
            response = await provider.complete(PROMPT)

        assert seen["headers"]["x-api-key"] == "ak"
        assert seen["headers"]["anthropic-version"] == "2023-06-01"
        assert seen["body"]["system"] == "system"
        assert seen["body"]["messages"] == [{"role": "user", "content": "user"}]
        assert response.content == "hello"
        assert response.usage == {"prompt_tokens": 3, "completion_tokens": 4, "total_tokens": 7}


class TestGemini:
    """Test the Gemini request and response shapes."""

    @pytest.mark.asyncio
    async def test_complete(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["headers"] = request.headers
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={
                "candidates": [{
                    "content": {"parts": [{"text": "hi"}]},
                    "finishReason": "STOP",
                }],
                "usageMetadata": {"promptTokenCount": 1, "candidatesTokenCount": 1,
                                  "totalTokenCount": 2},
            })

        async with mock_client(handler) as client:
            provider = GeminiProvider(api_key="gk", client=client)
            response = await provider.complete(PROMPT)

        assert seen["headers"]["x-goog-api-key"] == "gk"
        assert seen["body"]["contents"][0]["parts"][0]["text"] == "system\n\nuser"
        assert seen["body"]["generationConfig"]["maxOutputTokens"] == 100
        assert response.content == "hi"
        assert response.finish_reason == "STOP"


class TestErrors:
    """Test mapping of transport and HTTP failures."""

    @pytest.mark.asyncio
    async def test_server_error_is_transient(self):
        async with mock_client(lambda request: httpx.Response(503)) as client:
            provider = OpenAIProvider(api_key="k", client=client)
            with pytest.raises(TransientProviderError):
                await provider.complete(PROMPT)

    @pytest.mark.asyncio
    async def test_rate_limit_is_transient(self):
        async with mock_client(lambda request: httpx.Response(429)) as client:
            provider = AnthropicProvider(api_key="k", client=client)
            with pytest.raises(TransientProviderError):
                await provider.complete(PROMPT)

    @pytest.mark.asyncio
    async def test_client_error(self):
        async with mock_client(lambda request: httpx.Response(401)) as client:
            provider = OpenAIProvider(api_key="k", client=client)
            with pytest.raises(ProviderError) as exc_info:
                await provider.complete(PROMPT)
            assert not isinstance(exc_info.value, TransientProviderError)

    @pytest.mark.asyncio
    async def test_timeout_is_transient(self):
        def handler(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        async with mock_client(handler) as client:
            provider = GeminiProvider(api_key="k", client=client)
            with pytest.raises(TransientProviderError):
                await provider.complete(PROMPT)

    @pytest.mark.asyncio
    async def test_unexpected_shape(self):
        async with mock_client(lambda request: httpx.Response(200, json={"nope": 1})) as client:
            provider = OpenAIProvider(api_key="k", client=client)
            with pytest.raises(MalformedResponseError):
                await provider.complete(PROMPT)


class TestParseJsonContent:
    """Test JSON completion parsing."""

    def test_plain(self):
        assert parse_json_content('["a", "b"]') == ["a", "b"]

    def test_code_fences(self):
        assert parse_json_content('```json\n["a"]\n```') == ["a"]

    def test_invalid(self):
        with pytest.raises(MalformedResponseError):
            parse_json_content("not json")
