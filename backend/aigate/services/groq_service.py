"""
AIGate — Groq Provider Adapter
==============================

What:  ProviderAdapter for Groq's OpenAI-compatible chat completions API.
Why:   Chat, chart and flashcard generation run on Groq-hosted open models;
       several models per domain let the orchestrator fall back when one is
       overloaded or too small for the prompt.
How:   One `AsyncGroq` client per key, cached, with the SDK's own retries
       disabled. Rotation and backoff belong to the orchestrator; SDK retries
       would burn the same rate-limited key again.

Error mapping (groq.APIStatusError.status_code):
    429       → RATE_LIMITED   (Retry-After header, then message hint)
    413       → PAYLOAD_TOO_LARGE
    503 / 529 → PROVIDER_OVERLOADED
    other     → message fallback ("tokens per minute" bodies included)
    APITimeoutError → TimeoutError (raised from invoke)
"""

import logging
import threading
from typing import Dict, Optional, Sequence

from groq import APIStatusError, APITimeoutError, AsyncGroq

from aigate.exceptions import ErrorKind
from aigate.schemas.invocation import ChatMessage
from aigate.services.llm_base import (
    GenerationParams,
    ProviderAdapter,
    ProviderReply,
    classify_by_message,
    parse_retry_after_header,
    parse_retry_after_ms,
    status_code_of,
)

logger = logging.getLogger(__name__)

OVERLOADED_STATUS_CODES = {503, 529}


class GroqProvider(ProviderAdapter):
    """Groq chat completions."""

    name = "groq"

    def __init__(self):
        self._clients: Dict[str, AsyncGroq] = {}
        self._clients_lock = threading.Lock()

    def _client(self, secret: str) -> AsyncGroq:
        with self._clients_lock:
            client = self._clients.get(secret)
            if client is None:
                client = AsyncGroq(api_key=secret, max_retries=0)
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
        try:
            completion = await self._client(secret).chat.completions.create(
                model=model,
                messages=[{"role": m.role, "content": m.content} for m in messages],
                temperature=params.temperature,
                max_tokens=params.max_output_tokens,
                top_p=params.top_p,
                timeout=timeout,
            )
        except APITimeoutError as e:
            raise TimeoutError(f"Groq request timed out: {e}") from e

        choice = completion.choices[0] if completion.choices else None
        content = (choice.message.content or "").strip() if choice else ""
        usage = getattr(completion, "usage", None)
        usage_tokens = getattr(usage, "total_tokens", None) if usage else None
        return ProviderReply(content=content, usage_tokens=usage_tokens)

    def classify_error(self, error: BaseException) -> ErrorKind:
        if isinstance(error, APIStatusError):
            if error.status_code == 429:
                return ErrorKind.RATE_LIMITED
            if error.status_code == 413:
                return ErrorKind.PAYLOAD_TOO_LARGE
            if error.status_code in OVERLOADED_STATUS_CODES:
                return ErrorKind.PROVIDER_OVERLOADED
        return classify_by_message(str(error), status_code_of(error))

    def extract_retry_after_ms(self, error: BaseException) -> Optional[int]:
        if isinstance(error, APIStatusError):
            header_ms = parse_retry_after_header(error.response.headers.get("retry-after"))
            if header_ms is not None:
                return header_ms
        return parse_retry_after_ms(str(error))

    async def health_check(self, secret: str) -> bool:
        """List models with this key; costs no generation quota."""
        try:
            models = await self._client(secret).models.list()
            return bool(models.data)
        except Exception as e:
            logger.warning("Groq health check failed: %s", str(e))
            return False

    async def aclose(self) -> None:
        with self._clients_lock:
            clients = list(self._clients.values())
            self._clients.clear()
        for client in clients:
            await client.close()
