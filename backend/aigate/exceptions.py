"""
AIGate — Error Taxonomy and Exception Hierarchy
===============================================

What:  The canonical failure kinds of a generation call, and the exceptions
       the HTTP layer (and exception-preferring callers) raise for them.
Why:   Every vendor reports "slow down" or "too big" differently. Adapters
       translate vendor errors into one ErrorKind so the orchestrator reacts
       to kinds, never to vendor strings.
How:   `ErrorKind` is a str Enum carried on InvocationResult. Terminal kinds
       map 1:1 to an `InvocationError` subclass with its HTTP status.

Exception Hierarchy:
    AIGateError (base)
    ├── NotFoundError                   → 404 (unknown domain)
    ├── ConfigurationError              → startup only
    ├── AllCredentialsExhaustedError    → pool-internal, becomes a result
    └── InvocationError
        ├── AllCredentialsRateLimitedError → 503 + Retry-After
        ├── AllModelsUnavailableError      → 503
        ├── AllOptionsExhaustedError       → 503
        ├── ProviderFatalError             → 503
        ├── PayloadTooLargeError           → 413
        └── InvocationTimeoutError         → 408

Per-attempt kinds (RATE_LIMITED, PROVIDER_OVERLOADED, a single FATAL) are
recovered inside the orchestrator and never raised.
"""

from enum import Enum
from typing import Any, Dict, Optional, Type


class ErrorKind(str, Enum):
    """Canonical failure classification shared by adapters, orchestrator and callers."""

    # Per-attempt classifications (returned by ProviderAdapter.classify_error)
    RATE_LIMITED = "rate_limited"
    PAYLOAD_TOO_LARGE = "payload_too_large"
    PROVIDER_OVERLOADED = "provider_overloaded"
    FATAL = "fatal"

    # Terminal outcomes
    TIMEOUT = "timeout"
    ALL_CREDENTIALS_RATE_LIMITED = "all_credentials_rate_limited"
    ALL_MODELS_UNAVAILABLE = "all_models_unavailable"
    ALL_OPTIONS_EXHAUSTED = "all_options_exhausted"


class AIGateError(Exception):
    """
    Base exception for all AIGate errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional debug info (attempts, last error, model names)
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class NotFoundError(AIGateError):
    """Raised when a caller names a generation domain or model that is not configured."""

    def __init__(
        self,
        resource: str = "resource",
        resource_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = f"The requested {resource} was not found"
        if resource_id:
            message = f"{resource} '{resource_id}' was not found"
        ctx = context or {}
        ctx["resource"] = resource
        if resource_id:
            ctx["resource_id"] = resource_id
        super().__init__(message=message, context=ctx)


class ConfigurationError(AIGateError):
    """Raised when a pool or catalog is constructed from unusable configuration."""


class AllCredentialsExhaustedError(AIGateError):
    """
    Raised by CredentialPool.next() when every credential is cooling down,
    even after sweeping expired cooldowns.

    Carries `retry_after_ms`: time until the earliest credential recovers.
    """

    def __init__(self, retry_after_ms: Optional[int] = None, context: Optional[Dict[str, Any]] = None):
        ctx = context or {}
        if retry_after_ms is not None:
            ctx["retry_after_ms"] = retry_after_ms
        super().__init__(message="All API keys are currently rate limited", context=ctx)
        self.retry_after_ms = retry_after_ms


class InvocationError(AIGateError):
    """
    A terminal generation failure, raised from InvocationResult.raise_for_error().

    Subclasses pin `kind` and `status_code`; the HTTP layer renders them with
    one exception handler.
    """

    kind: ErrorKind = ErrorKind.FATAL
    status_code: int = 503
    default_message = "The AI service is temporarily unavailable. Please try again later."

    def __init__(
        self,
        message: Optional[str] = None,
        retry_after: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if retry_after:
            ctx["retry_after"] = retry_after
        super().__init__(message=message or self.default_message, context=ctx)
        self.retry_after = retry_after


class AllCredentialsRateLimitedError(InvocationError):
    kind = ErrorKind.ALL_CREDENTIALS_RATE_LIMITED
    default_message = "All API keys are currently rate limited. Please try again in a few minutes."


class AllModelsUnavailableError(InvocationError):
    kind = ErrorKind.ALL_MODELS_UNAVAILABLE
    default_message = (
        "All suitable models are currently unavailable. Please try again in a few minutes."
    )


class AllOptionsExhaustedError(InvocationError):
    kind = ErrorKind.ALL_OPTIONS_EXHAUSTED
    default_message = "All available models are currently busy. Please try again in a few minutes."


class ProviderFatalError(InvocationError):
    kind = ErrorKind.FATAL
    default_message = "The AI provider rejected the request."


class PayloadTooLargeError(InvocationError):
    kind = ErrorKind.PAYLOAD_TOO_LARGE
    status_code = 413
    default_message = "The request is too large for every available model. Try a shorter input."


class InvocationTimeoutError(InvocationError):
    kind = ErrorKind.TIMEOUT
    status_code = 408
    default_message = "The AI service did not respond in time. Please try again."


INVOCATION_ERRORS: Dict[ErrorKind, Type[InvocationError]] = {
    cls.kind: cls
    for cls in (
        AllCredentialsRateLimitedError,
        AllModelsUnavailableError,
        AllOptionsExhaustedError,
        ProviderFatalError,
        PayloadTooLargeError,
        InvocationTimeoutError,
    )
}
