"""
AIGate — Provider Adapter Unit Tests (Mocked)
=============================================

What:  Tests for GeminiProvider and GroqProvider with mocked SDK clients.
Why:   Tests should not make real API calls (costs quota, requires network).
How:   Gemini: patch the `genai` module the adapter imported. Groq: real
       groq exception types built over httpx responses, and a mocked client.

What we test:
    ✅ Request shaping (roles, system instruction, sampling params)
    ✅ Structured error classification per SDK
    ✅ Retry hints from RetryInfo details and Retry-After headers
    ✅ SDK timeouts surface as TimeoutError
    ✅ One SDK client per key, closed on shutdown
    ❌ Real API calls
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import groq
import httpx
import pytest
from google.api_core import exceptions as google_exceptions

from aigate.exceptions import ErrorKind
from aigate.schemas.invocation import ChatMessage
from aigate.services.gemini_service import GeminiProvider, to_gemini_contents
from aigate.services.groq_service import GroqProvider
from aigate.services.llm_base import GenerationParams

MESSAGES = [
    ChatMessage(role="system", content="Be brief"),
    ChatMessage(role="user", content="hi"),
    ChatMessage(role="assistant", content="hello"),
    ChatMessage(role="user", content="summarize"),
]

GROQ_URL = "https://api.groq.com/openai/v1/chat/completions"


def groq_status_error(cls, status, message, headers=None):
    response = httpx.Response(status, headers=headers or {}, request=httpx.Request("POST", GROQ_URL))
    return cls(message, response=response, body=None)


class TestGeminiProvider:
    def test_contents_mapping(self):
        system, contents = to_gemini_contents(MESSAGES)
        assert system == "Be brief"
        assert contents == [
            {"role": "user", "parts": ["hi"]},
            {"role": "model", "parts": ["hello"]},
            {"role": "user", "parts": ["summarize"]},
        ]

    def test_contents_without_system(self):
        system, _ = to_gemini_contents([ChatMessage(role="user", content="x")])
        assert system is None

    @pytest.mark.asyncio
    async def test_invoke_success(self):
        provider = GeminiProvider()
        client = MagicMock()
        with patch("aigate.services.gemini_service.genai") as mock_genai, patch.object(
            provider, "_client", return_value=client
        ) as mock_client:
            mock_response = MagicMock()
            mock_response.text = "  A short summary  "
            mock_response.usage_metadata = MagicMock(total_token_count=42)
            mock_model = MagicMock()
            mock_model.generate_content_async = AsyncMock(return_value=mock_response)
            mock_genai.GenerativeModel.return_value = mock_model

            reply = await provider.invoke(
                "gemini-key", "gemini-2.0-flash", MESSAGES, GenerationParams(temperature=0.2), timeout=30
            )

            assert reply.content == "A short summary"
            assert reply.usage_tokens == 42
            mock_client.assert_called_once_with("gemini-key")
            assert mock_model._async_client is client
            mock_genai.configure.assert_not_called()
            mock_genai.GenerativeModel.assert_called_once_with(
                "gemini-2.0-flash", system_instruction="Be brief"
            )
            call = mock_model.generate_content_async.call_args
            assert call.args[0][-1] == {"role": "user", "parts": ["summarize"]}
            assert call.kwargs["request_options"] == {"timeout": 30}

    @pytest.mark.asyncio
    async def test_deadline_exceeded_becomes_timeout(self):
        provider = GeminiProvider()
        with patch("aigate.services.gemini_service.genai") as mock_genai, patch.object(provider, "_client"):
            mock_model = MagicMock()
            mock_model.generate_content_async = AsyncMock(
                side_effect=google_exceptions.DeadlineExceeded("Deadline Exceeded")
            )
            mock_genai.GenerativeModel.return_value = mock_model

            with pytest.raises(TimeoutError):
                await provider.invoke("k", "gemini-2.0-flash", MESSAGES, GenerationParams(), timeout=1)

    def test_client_cached_per_key(self):
        with patch("aigate.services.gemini_service.glm") as mock_glm:
            mock_glm.GenerativeServiceAsyncClient.side_effect = lambda **kwargs: MagicMock(options=kwargs)
            provider = GeminiProvider()

            first = provider._client("key-a")
            assert provider._client("key-a") is first
            assert provider._client("key-b") is not first
            assert first.options == {"client_options": {"api_key": "key-a"}}
            assert mock_glm.GenerativeServiceAsyncClient.call_count == 2

    @pytest.mark.asyncio
    async def test_aclose_closes_cached_transports(self):
        with patch("aigate.services.gemini_service.glm") as mock_glm:
            mock_glm.GenerativeServiceAsyncClient.side_effect = lambda **kwargs: MagicMock(
                transport=MagicMock(close=AsyncMock())
            )
            provider = GeminiProvider()
            clients = [provider._client("key-a"), provider._client("key-b")]

            await provider.aclose()

            for client in clients:
                client.transport.close.assert_awaited_once()
            assert provider._client("key-a") is not clients[0]

    @pytest.mark.asyncio
    async def test_health_check_lists_models_with_the_key(self):
        with patch("aigate.services.gemini_service.glm") as mock_glm:
            client = mock_glm.ModelServiceAsyncClient.return_value
            client.list_models = AsyncMock()
            client.transport.close = AsyncMock()

            assert await GeminiProvider().health_check("gemini-key") is True
            mock_glm.ModelServiceAsyncClient.assert_called_once_with(client_options={"api_key": "gemini-key"})
            client.transport.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_health_check_failure(self):
        with patch("aigate.services.gemini_service.glm") as mock_glm:
            client = mock_glm.ModelServiceAsyncClient.return_value
            client.list_models = AsyncMock(side_effect=google_exceptions.PermissionDenied("API key not valid"))
            client.transport.close = AsyncMock()

            assert await GeminiProvider().health_check("bad-key") is False
            client.transport.close.assert_awaited_once()

    @pytest.mark.parametrize(
        "error, expected",
        [
            (google_exceptions.ResourceExhausted("Quota exceeded"), ErrorKind.RATE_LIMITED),
            (google_exceptions.TooManyRequests("Too many requests"), ErrorKind.RATE_LIMITED),
            (
                google_exceptions.InvalidArgument("The input token count exceeds the maximum"),
                ErrorKind.PAYLOAD_TOO_LARGE,
            ),
            (google_exceptions.InvalidArgument("Unknown field"), ErrorKind.FATAL),
            (google_exceptions.ServiceUnavailable("The model is overloaded"), ErrorKind.PROVIDER_OVERLOADED),
            (google_exceptions.InternalServerError("Internal error"), ErrorKind.FATAL),
            (google_exceptions.PermissionDenied("API key not valid"), ErrorKind.FATAL),
        ],
    )
    def test_classify_error(self, error, expected):
        assert GeminiProvider().classify_error(error) == expected

    def test_retry_hint_from_retry_info_detail(self):
        retry_info = SimpleNamespace(retry_delay=SimpleNamespace(seconds=7, nanos=500_000_000))
        error = google_exceptions.ResourceExhausted("Quota exceeded", details=[retry_info])
        assert GeminiProvider().extract_retry_after_ms(error) == 7500

    def test_retry_hint_from_message(self):
        error = google_exceptions.ResourceExhausted("Quota exceeded. Please retry in 12.5s")
        assert GeminiProvider().extract_retry_after_ms(error) == 12500

    def test_no_retry_hint(self):
        assert GeminiProvider().extract_retry_after_ms(google_exceptions.ResourceExhausted("Quota")) is None


class TestGroqProvider:
    @pytest.mark.asyncio
    async def test_invoke_success(self):
        provider = GroqProvider()
        completion = SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content=" graph TD; A-->B "))],
            usage=SimpleNamespace(total_tokens=12),
        )
        client = MagicMock()
        client.chat.completions.create = AsyncMock(return_value=completion)

        with patch.object(provider, "_client", return_value=client) as mock_client:
            reply = await provider.invoke(
                "groq-key",
                "llama-3.3-70b-versatile",
                MESSAGES,
                GenerationParams(temperature=0.3, max_output_tokens=512, top_p=0.9),
                timeout=20,
            )

        assert reply.content == "graph TD; A-->B"
        assert reply.usage_tokens == 12
        mock_client.assert_called_once_with("groq-key")
        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "llama-3.3-70b-versatile"
        assert kwargs["max_tokens"] == 512
        assert kwargs["top_p"] == 0.9
        assert kwargs["timeout"] == 20
        assert kwargs["messages"][0] == {"role": "system", "content": "Be brief"}

    @pytest.mark.asyncio
    async def test_api_timeout_becomes_timeout(self):
        provider = GroqProvider()
        client = MagicMock()
        client.chat.completions.create = AsyncMock(
            side_effect=groq.APITimeoutError(request=httpx.Request("POST", GROQ_URL))
        )
        with patch.object(provider, "_client", return_value=client):
            with pytest.raises(TimeoutError):
                await provider.invoke("k", "m", MESSAGES, GenerationParams(), timeout=1)

    def test_client_cached_per_key(self):
        provider = GroqProvider()
        assert provider._client("key-a") is provider._client("key-a")
        assert provider._client("key-a") is not provider._client("key-b")

    @pytest.mark.asyncio
    async def test_aclose_closes_cached_clients(self):
        provider = GroqProvider()
        client = provider._client("key-a")

        with patch.object(client, "close", new_callable=AsyncMock) as mock_close:
            await provider.aclose()

        mock_close.assert_awaited_once()
        assert provider._client("key-a") is not client

    @pytest.mark.parametrize(
        "error, expected",
        [
            (groq_status_error(groq.RateLimitError, 429, "Rate limit reached"), ErrorKind.RATE_LIMITED),
            (groq_status_error(groq.APIStatusError, 413, "Request Entity Too Large"), ErrorKind.PAYLOAD_TOO_LARGE),
            (groq_status_error(groq.InternalServerError, 503, "Service Unavailable"), ErrorKind.PROVIDER_OVERLOADED),
            (
                groq_status_error(groq.BadRequestError, 400, "Please reduce the length of the messages; too many tokens"),
                ErrorKind.PAYLOAD_TOO_LARGE,
            ),
            (groq_status_error(groq.AuthenticationError, 401, "Invalid API Key"), ErrorKind.FATAL),
        ],
    )
    def test_classify_error(self, error, expected):
        assert GroqProvider().classify_error(error) == expected

    def test_retry_hint_prefers_header(self):
        error = groq_status_error(
            groq.RateLimitError, 429, "Please try again in 2m", headers={"retry-after": "7"}
        )
        assert GroqProvider().extract_retry_after_ms(error) == 7000

    def test_retry_hint_falls_back_to_message(self):
        error = groq_status_error(groq.RateLimitError, 429, "Please try again in 2m")
        assert GroqProvider().extract_retry_after_ms(error) == 120000
