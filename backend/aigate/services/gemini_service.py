"""
AIGate — Google Gemini Provider Adapter
=======================================

What:  ProviderAdapter for Google Gemini via the google-generativeai SDK.
Why:   Note generation runs on Gemini's free tier, which gives each key a
       small per-minute quota. Several keys rotated by the CredentialPool
       give the notes domain usable throughput.
How:   One `generate_content_async` call per invoke(), sent through an async
       client cached per key (closed by aclose()). Errors stay as the
       SDK's `google.api_core.exceptions` types so `classify_error` can map
       them structurally:

           ResourceExhausted / TooManyRequests (429) → RATE_LIMITED
           InvalidArgument mentioning tokens        → PAYLOAD_TOO_LARGE
           ServiceUnavailable (503)                 → PROVIDER_OVERLOADED
           DeadlineExceeded                         → TimeoutError (raised)
           anything else                            → message fallback

Retry hints:
    Gemini 429s carry a RetryInfo detail ("retryDelay": "5s"). The structured
    detail is read first; the message text is the fallback.
"""

import logging
import threading
import time
from typing import Dict, List, Optional, Sequence, Tuple

import google.ai.generativelanguage as glm
import google.generativeai as genai
from google.api_core import exceptions as google_exceptions

from aigate.exceptions import ErrorKind
from aigate.schemas.invocation import ChatMessage
from aigate.services.llm_base import (
    GenerationParams,
    ProviderAdapter,
    ProviderReply,
    classify_by_message,
    parse_retry_after_ms,
    status_code_of,
)

logger = logging.getLogger(__name__)


def to_gemini_contents(messages: Sequence[ChatMessage]) -> Tuple[Optional[str], List[dict]]:
    """Split system messages into a system instruction; map assistant → model."""
    system_parts = [m.content for m in messages if m.role == "system"]
    contents = [
        {"role": "model" if m.role == "assistant" else "user", "parts": [m.content]}
        for m in messages
        if m.role != "system"
    ]
    return ("\n\n".join(system_parts) or None), contents


class GeminiProvider(ProviderAdapter):
    """Google Gemini text generation."""

    name = "gemini"

    def __init__(self):
        self._clients: Dict[str, glm.GenerativeServiceAsyncClient] = {}
        self._clients_lock = threading.Lock()

    def _client(self, secret: str) -> glm.GenerativeServiceAsyncClient:
        with self._clients_lock:
            client = self._clients.get(secret)
            if client is None:
                client = glm.GenerativeServiceAsyncClient(client_options={"api_key": secret})
                self._clients[secret] = client
            return client

    async def invoke(
        self,
        secret: str,
        model: str,
        messages: Sequence[ChatMessage],
        params: GenerationParams,
        timeout: float,
    ) -> ProviderReply:
        system_instruction, contents = to_gemini_contents(messages)

        generative_model = genai.GenerativeModel(model, system_instruction=system_instruction)
        # The model talks through this key's cached client, never the module-level default.
        generative_model._async_client = self._client(secret)

        start_time = time.perf_counter()
        try:
            response = await generative_model.generate_content_async(
                contents,
                generation_config=genai.GenerationConfig(
                    temperature=params.temperature,
                    max_output_tokens=params.max_output_tokens,
                    top_p=params.top_p,
                ),
                request_options={"timeout": timeout},
            )
        except google_exceptions.DeadlineExceeded as e:
            raise TimeoutError(f"Gemini deadline exceeded: {e}") from e

        duration_ms = (time.perf_counter() - start_time) * 1000
        content = response.text.strip() if response.text else ""
        usage = getattr(response, "usage_metadata", None)
        usage_tokens = getattr(usage, "total_token_count", None) if usage else None

        logger.debug(
            "Gemini %s completed in %.0fms, %d chars, usage=%s",
            model,
            duration_ms,
            len(content),
            usage_tokens,
        )
        return ProviderReply(content=content, usage_tokens=usage_tokens)

    def classify_error(self, error: BaseException) -> ErrorKind:
        if isinstance(error, (google_exceptions.ResourceExhausted, google_exceptions.TooManyRequests)):
            return ErrorKind.RATE_LIMITED
        if isinstance(error, google_exceptions.InvalidArgument) and "token" in str(error).lower():
            return ErrorKind.PAYLOAD_TOO_LARGE
        if isinstance(error, google_exceptions.ServiceUnavailable):
            return ErrorKind.PROVIDER_OVERLOADED
        return classify_by_message(str(error), status_code_of(error))

    def extract_retry_after_ms(self, error: BaseException) -> Optional[int]:
        details = getattr(error, "details", None)
        if isinstance(details, (list, tuple)):
            for detail in details:
                delay = getattr(detail, "retry_delay", None)
                seconds = getattr(delay, "seconds", None)
                if isinstance(seconds, int):
                    nanos = getattr(delay, "nanos", 0) or 0
                    return seconds * 1000 + nanos // 1_000_000
        return parse_retry_after_ms(str(error))

    async def health_check(self, secret: str) -> bool:
        """List models with this key; costs no generation quota."""
        client = glm.ModelServiceAsyncClient(client_options={"api_key": secret})
        try:
            await client.list_models(request={"page_size": 1})
            return True
        except Exception as e:
            logger.warning("Gemini health check failed: %s", str(e))
            return False
        finally:
            await client.transport.close()

    async def aclose(self) -> None:
        with self._clients_lock:
            clients = list(self._clients.values())
            self._clients.clear()
        for client in clients:
            await client.transport.close()
