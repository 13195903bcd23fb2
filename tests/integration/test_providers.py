"""
Integration tests for the provider adapters.

HTTP adapters run against httpx.MockTransport; the Anthropic SDK is mocked.
"""

import json
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

import anthropic
import httpx

from metamind.ai.providers import (
    ClaudeProvider,
    GeminiProvider,
    OpenAIProvider,
    create_provider,
)
from metamind.ai.types import ExpectedShape
from metamind.config import ProviderConfig
from metamind.exceptions import (
    ConfigurationError,
    EmptyResponseError,
    InvalidRequestError,
    MalformedStructureError,
    ProviderConnectionError,
    ProviderHttpError,
    ProviderTimeoutError,
)


GEMINI_URL = "https://gemini.test/v1"
OPENAI_URL = "https://openai.test/v1"


def gemini_body(text: str) -> dict:
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


def openai_body(text: str) -> dict:
    return {"choices": [{"message": {"role": "assistant", "content": text}}]}


def mock_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestGeminiProvider:
    """Tests for the Gemini generateContent adapter"""

    @pytest.mark.asyncio
    async def test_request_shape_and_parsing(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = request.url
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=gemini_body('```json\n{"fullText": "Ward."}\n```'))

        provider = GeminiProvider("gemini-2.0-flash", GEMINI_URL, client=mock_client(handler))

        result = await provider.call("Give advice", ExpectedShape.OBJECT, None, "key-1")

        assert result == {"fullText": "Ward."}
        assert seen["url"].path == "/v1/models/gemini-2.0-flash:generateContent"
        assert seen["url"].params["key"] == "key-1"
        assert seen["body"]["contents"][0]["parts"][0]["text"] == "Give advice"
        assert seen["body"]["safetySettings"]

    @pytest.mark.asyncio
    async def test_explicit_model(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert "gemini-1.5-pro" in request.url.path
            return httpx.Response(200, json=gemini_body("[1]"))

        provider = GeminiProvider("gemini-2.0-flash", GEMINI_URL, client=mock_client(handler))

        assert await provider.call("X", ExpectedShape.ARRAY, "gemini-1.5-pro", "k") == [1]

    @pytest.mark.asyncio
    async def test_rate_limit_maps_to_http_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(429, json={"error": {"message": "quota"}})

        provider = GeminiProvider("gemini-2.0-flash", GEMINI_URL, client=mock_client(handler))

        with pytest.raises(ProviderHttpError) as exc_info:
            await provider.call("X", ExpectedShape.OBJECT, None, "k")

        assert exc_info.value.status_code == 429
        assert exc_info.value.is_transient
        assert exc_info.value.response_body == {"message": "quota"}

    @pytest.mark.asyncio
    async def test_no_candidates_is_empty_response(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"candidates": []})

        provider = GeminiProvider("gemini-2.0-flash", GEMINI_URL, client=mock_client(handler))

        with pytest.raises(EmptyResponseError):
            await provider.call("X", ExpectedShape.OBJECT, None, "k")

    @pytest.mark.asyncio
    async def test_prose_without_json_is_malformed(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=gemini_body("I'd rather not."))

        provider = GeminiProvider("gemini-2.0-flash", GEMINI_URL, client=mock_client(handler))

        with pytest.raises(MalformedStructureError) as exc_info:
            await provider.call("X", ExpectedShape.OBJECT, None, "k")

        assert exc_info.value.provider == "gemini"

    @pytest.mark.asyncio
    async def test_transport_errors(self):
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        def slow(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(ProviderConnectionError):
            await GeminiProvider("m", GEMINI_URL, client=mock_client(refuse)).call(
                "X", ExpectedShape.OBJECT, None, "k"
            )
        with pytest.raises(ProviderTimeoutError):
            await GeminiProvider("m", GEMINI_URL, client=mock_client(slow)).call(
                "X", ExpectedShape.OBJECT, None, "k"
            )

    @pytest.mark.asyncio
    async def test_empty_prompt_rejected_before_network(self):
        handler = MagicMock()
        provider = GeminiProvider("m", GEMINI_URL, client=mock_client(handler))

        with pytest.raises(InvalidRequestError):
            await provider.call("  ", ExpectedShape.OBJECT, None, "k")

        handler.assert_not_called()


class TestOpenAIProvider:
    """Tests for the OpenAI chat completions adapter"""

    @pytest.mark.asyncio
    async def test_request_shape_and_parsing(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=openai_body('Here: {"summary": "ok"}'))

        provider = OpenAIProvider("gpt-4o-mini", OPENAI_URL, client=mock_client(handler))

        result = await provider.call("Summarize", ExpectedShape.OBJECT, None, "sk-abc")

        assert result == {"summary": "ok"}
        assert seen["url"] == "https://openai.test/v1/chat/completions"
        assert seen["auth"] == "Bearer sk-abc"
        assert seen["body"]["model"] == "gpt-4o-mini"
        assert seen["body"]["temperature"] == 0
        assert seen["body"]["messages"] == [{"role": "user", "content": "Summarize"}]

    @pytest.mark.asyncio
    async def test_auth_failure_is_permanent(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401, text="invalid key")

        provider = OpenAIProvider("gpt-4o-mini", OPENAI_URL, client=mock_client(handler))

        with pytest.raises(ProviderHttpError) as exc_info:
            await provider.call("X", ExpectedShape.OBJECT, None, "sk-bad")

        assert exc_info.value.status_code == 401
        assert not exc_info.value.is_transient

    @pytest.mark.asyncio
    async def test_blank_content_is_empty_response(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=openai_body("   "))

        provider = OpenAIProvider("gpt-4o-mini", OPENAI_URL, client=mock_client(handler))

        with pytest.raises(EmptyResponseError):
            await provider.call("X", ExpectedShape.OBJECT, None, "sk-abc")

    @pytest.mark.asyncio
    async def test_close_keeps_injected_client(self):
        client = mock_client(lambda request: httpx.Response(200, json=openai_body("{}")))
        provider = OpenAIProvider("gpt-4o-mini", OPENAI_URL, client=client)

        await provider.close()

        assert not client.is_closed
        await client.aclose()


class TestClaudeProvider:
    """Tests for the Anthropic adapter"""

    @staticmethod
    def _response(text: str) -> MagicMock:
        response = MagicMock()
        response.content = [MagicMock(type="text", text=text)]
        return response

    @staticmethod
    def _http_response(status_code: int) -> httpx.Response:
        return httpx.Response(status_code, request=httpx.Request("POST", "https://api.anthropic.com/v1/messages"))

    @pytest.mark.asyncio
    async def test_parses_message_text(self):
        with patch("anthropic.AsyncAnthropic") as mock_cls:
            mock_cls.return_value.messages.create = AsyncMock(
                return_value=self._response('{"fullText": "Hold the wave."}')
            )
            provider = ClaudeProvider("claude-sonnet-4-20250514")

            result = await provider.call("X", ExpectedShape.OBJECT, None, "sk-ant-1")

        assert result == {"fullText": "Hold the wave."}
        kwargs = mock_cls.return_value.messages.create.call_args.kwargs
        assert kwargs["model"] == "claude-sonnet-4-20250514"
        assert kwargs["messages"] == [{"role": "user", "content": "X"}]
        mock_cls.assert_called_once_with(api_key="sk-ant-1", timeout=60.0, max_retries=0)

    @pytest.mark.asyncio
    async def test_one_client_per_credential(self):
        with patch("anthropic.AsyncAnthropic") as mock_cls:
            mock_cls.return_value.messages.create = AsyncMock(return_value=self._response("{}"))
            provider = ClaudeProvider("m")

            await provider.call("X", ExpectedShape.OBJECT, None, "sk-ant-1")
            await provider.call("X", ExpectedShape.OBJECT, None, "sk-ant-1")
            await provider.call("X", ExpectedShape.OBJECT, None, "sk-ant-2")

        assert mock_cls.call_count == 2

    @pytest.mark.asyncio
    async def test_rate_limit_mapped(self):
        error = anthropic.RateLimitError("slow down", response=self._http_response(429), body=None)
        with patch("anthropic.AsyncAnthropic") as mock_cls:
            mock_cls.return_value.messages.create = AsyncMock(side_effect=error)
            provider = ClaudeProvider("m")

            with pytest.raises(ProviderHttpError) as exc_info:
                await provider.call("X", ExpectedShape.OBJECT, None, "sk-ant-1")

        assert exc_info.value.status_code == 429

    @pytest.mark.asyncio
    async def test_overloaded_mapped(self):
        error = anthropic.APIStatusError("overloaded", response=self._http_response(529), body=None)
        with patch("anthropic.AsyncAnthropic") as mock_cls:
            mock_cls.return_value.messages.create = AsyncMock(side_effect=error)
            provider = ClaudeProvider("m")

            with pytest.raises(ProviderHttpError) as exc_info:
                await provider.call("X", ExpectedShape.OBJECT, None, "sk-ant-1")

        assert exc_info.value.status_code == 529
        assert exc_info.value.is_transient

    @pytest.mark.asyncio
    async def test_connection_error_mapped(self):
        request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
        error = anthropic.APIConnectionError(request=request)
        with patch("anthropic.AsyncAnthropic") as mock_cls:
            mock_cls.return_value.messages.create = AsyncMock(side_effect=error)
            provider = ClaudeProvider("m")

            with pytest.raises(ProviderConnectionError):
                await provider.call("X", ExpectedShape.OBJECT, None, "sk-ant-1")

    @pytest.mark.asyncio
    async def test_empty_content(self):
        response = MagicMock()
        response.content = []
        with patch("anthropic.AsyncAnthropic") as mock_cls:
            mock_cls.return_value.messages.create = AsyncMock(return_value=response)
            provider = ClaudeProvider("m")

            with pytest.raises(EmptyResponseError):
                await provider.call("X", ExpectedShape.OBJECT, None, "sk-ant-1")


class TestCreateProvider:
    """Tests for the provider factory"""

    def test_builds_each_provider(self):
        assert isinstance(create_provider(ProviderConfig("gemini", ("k",), "m", GEMINI_URL)), GeminiProvider)
        assert isinstance(create_provider(ProviderConfig("openai", ("k",), "m", OPENAI_URL)), OpenAIProvider)
        assert isinstance(create_provider(ProviderConfig("claude", ("k",), "m")), ClaudeProvider)

    def test_unknown_provider(self):
        with pytest.raises(ConfigurationError):
            create_provider(ProviderConfig("mistral", ("k",), "m", "https://x"))
