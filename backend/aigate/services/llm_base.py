"""
AIGate — Abstract Provider Adapter Interface
============================================

What:  The contract every AI vendor adapter implements, plus the shared
       fallbacks adapters use for undocumented vendor behavior.
Why:   One orchestrator drives every vendor. Adapters own the vendor SDK,
       the vendor's error types and the vendor's retry hints; the
       orchestrator only sees ProviderReply or an ErrorKind.
How:   Concrete adapters subclass ProviderAdapter. `classify_error` maps
       structured SDK errors (exception types, HTTP status) first and calls
       `classify_by_message` only for errors they do not recognize.

Implementations:
    - GeminiProvider: google-generativeai (notes domain)
    - GroqProvider:   groq SDK (chat, chart, flashcard domains)
"""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Sequence

from aigate.exceptions import ErrorKind
from aigate.schemas.invocation import ChatMessage


@dataclass
class GenerationParams:
    temperature: float = 0.7
    max_output_tokens: int = 1024
    top_p: float = 1.0


@dataclass
class ProviderReply:
    content: str
    # None when the vendor did not report usage; the orchestrator estimates.
    usage_tokens: Optional[int] = None


class ProviderAdapter(ABC):
    """
    Abstract interface for one text-generation vendor.

    Contract:
        - invoke() performs exactly one call with exactly one credential; it
          never retries and never rotates keys (that is the orchestrator's job)
        - invoke() raises the vendor's own exception on failure, except for
          vendor timeouts, which it re-raises as builtin TimeoutError
        - classify_error() never raises
    """

    name: str = "provider"

    @abstractmethod
    async def invoke(
        self,
        secret: str,
        model: str,
        messages: Sequence[ChatMessage],
        params: GenerationParams,
        timeout: float,
    ) -> ProviderReply:
        """
        Send one generation request.

        Args:
            secret:   API key of the credential chosen for this attempt.
            model:    Vendor model name from the ModelCatalog.
            messages: Conversation, already fitted to the model's budget.
            params:   Sampling parameters.
            timeout:  Seconds left before the caller's deadline.
        """
        ...

    @abstractmethod
    def classify_error(self, error: BaseException) -> ErrorKind:
        """Map a vendor error onto RATE_LIMITED, PAYLOAD_TOO_LARGE, PROVIDER_OVERLOADED or FATAL."""
        ...

    def extract_retry_after_ms(self, error: BaseException) -> Optional[int]:
        """Vendor's retry hint in milliseconds, or None when it gave none."""
        return parse_retry_after_ms(str(error))

    @abstractmethod
    async def health_check(self, secret: str) -> bool:
        """Lightweight reachability check that does not consume generation quota."""
        ...

    async def aclose(self) -> None:
        """Release SDK clients; called once at application shutdown."""


# ══════════════════════════════════════════════════════════════════════════
# Shared fallbacks
# ══════════════════════════════════════════════════════════════════════════

_NUMBER = r"(\d+(?:\.\d+)?)"

# "retry in 500ms"
_RETRY_IN_MS = re.compile(r"(?:retry|try again) in\s+" + _NUMBER + r"\s*ms", re.IGNORECASE)
# "Please retry in 12.5s", "try again in 2m", "try again in 2m59.5s"
_RETRY_IN = re.compile(
    r"(?:retry|try again) in\s+(?:" + _NUMBER + r"\s*m(?!s))?\s*(?:" + _NUMBER + r"\s*s)?",
    re.IGNORECASE,
)
# Gemini JSON details: "retryDelay": "5s"
_RETRY_DELAY_FIELD = re.compile(r"retryDelay[\"']?\s*[:=]\s*[\"']?" + _NUMBER + r"s", re.IGNORECASE)
# Gemini gRPC details: retry_delay { seconds: 5 }
_RETRY_DELAY_PROTO = re.compile(r"retry_delay\s*\{\s*seconds:\s*(\d+)", re.IGNORECASE)


def parse_retry_after_ms(message: str) -> Optional[int]:
    """
    Pull a retry hint out of an error message.

    >>> parse_retry_after_ms("Please retry in 12.5s")
    12500
    >>> parse_retry_after_ms("retry in 2m")
    120000
    """
    if not message:
        return None

    match = _RETRY_IN_MS.search(message)
    if match:
        return int(round(float(match.group(1))))

    for match in _RETRY_IN.finditer(message):
        minutes, seconds = match.group(1), match.group(2)
        if minutes is None and seconds is None:
            continue
        total = float(minutes or 0) * 60 + float(seconds or 0)
        return int(round(total * 1000))

    match = _RETRY_DELAY_FIELD.search(message) or _RETRY_DELAY_PROTO.search(message)
    if match:
        return int(round(float(match.group(1)) * 1000))
    return None


def parse_retry_after_header(value: Optional[str]) -> Optional[int]:
    """Retry-After header in delta-seconds form, as milliseconds."""
    if not value:
        return None
    try:
        return int(round(float(value) * 1000))
    except ValueError:
        return None


def status_code_of(error: BaseException) -> Optional[int]:
    for attr in ("status_code", "status", "code"):
        value = getattr(error, attr, None)
        if isinstance(value, int):
            return value
    return None


def classify_by_message(message: str, status_code: Optional[int] = None) -> ErrorKind:
    """
    Last-resort classification by status code and message text.

    Rate-limit wording is checked first: vendors mention "tokens per minute"
    in 429 bodies, which would otherwise read as an oversized payload.
    """
    text = (message or "").lower()
    if (
        status_code == 429
        or "429" in text
        or "rate limit" in text
        or "rate_limit" in text
        or "quota" in text
        or "resource_exhausted" in text
    ):
        return ErrorKind.RATE_LIMITED
    if status_code == 413 or "token" in text:
        return ErrorKind.PAYLOAD_TOO_LARGE
    if "overload" in text or "capacity" in text:
        return ErrorKind.PROVIDER_OVERLOADED
    return ErrorKind.FATAL
