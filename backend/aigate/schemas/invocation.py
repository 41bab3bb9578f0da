"""
AIGate — Invocation Request/Result Schemas
==========================================

What:  Pydantic models for the `generate(request) -> result` contract and the
       operator status views.
Why:   The same models serve in-process callers and the HTTP API, so a note
       generator and an HTTP client see identical field names and validation.
Who:   Built by callers, read by InvocationOrchestrator, returned by routes.

Result vs exception:
    The orchestrator always RETURNS an InvocationResult; expected failures
    (exhaustion, timeout) are data, not crashes. Callers that prefer
    exceptions call `result.raise_for_error()`.
"""

from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from aigate.exceptions import INVOCATION_ERRORS, ErrorKind, InvocationError


class RequiredCapability(str, Enum):
    """How demanding a request is; `medium` and `high` exclude basic-tier models."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ChatMessage(BaseModel):
    role: str = Field(description="system, user or assistant")
    content: str = Field(description="Message text")

    @field_validator("role")
    @classmethod
    def validate_role(cls, v: str) -> str:
        valid = {"system", "user", "assistant"}
        if v not in valid:
            raise ValueError(f"Invalid role '{v}'. Must be one of: {valid}")
        return v


class InvocationRequest(BaseModel):
    """
    What:  One generation call. Owned by the caller, read-only to the core.

    Fields:
        messages: Ordered conversation; the last user message is the one the
                  prompt budgeter shortens when a model's budget is exceeded.
        required_capability: None/low accepts every tier.
        domain: Which token budget the usage is charged to; None charges
                the orchestrator's own domain.
        timeout_seconds: Whole-call deadline; None uses the configured default.
    """

    messages: List[ChatMessage] = Field(min_length=1)
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_output_tokens: int = Field(default=1024, ge=1, le=32_768)
    top_p: float = Field(default=1.0, gt=0.0, le=1.0)
    required_capability: Optional[RequiredCapability] = None
    domain: Optional[str] = None
    timeout_seconds: Optional[float] = Field(default=None, gt=0, le=600)

    def prompt_text(self) -> str:
        return "\n".join(m.content for m in self.messages)


class InvocationResult(BaseModel):
    """
    What:  Outcome of one generate() call. Returned once, never persisted here.

    On success `content`, `model_used` and `usage_tokens` are set. On failure
    `error` holds a terminal ErrorKind, `detail` the last observed provider
    error, and `retry_after_seconds` a hint for "try again in ~N" messages.
    """

    success: bool
    content: Optional[str] = None
    usage_tokens: int = 0
    model_used: Optional[str] = None
    credential_used: Optional[str] = None
    prompt_was_truncated: bool = False
    error: Optional[ErrorKind] = None
    detail: Optional[str] = None
    attempts: int = 0
    retry_after_seconds: Optional[int] = None

    def raise_for_error(self) -> "InvocationResult":
        """Raise the InvocationError matching `error`; return self on success."""
        if self.success:
            return self
        error_cls = INVOCATION_ERRORS.get(self.error, InvocationError)
        raise error_cls(
            retry_after=self.retry_after_seconds,
            context={
                "error_kind": self.error.value if self.error else None,
                "attempts": self.attempts,
                "last_error": self.detail,
            },
        )


class GenerateRequest(BaseModel):
    """HTTP body for POST /api/generate/{domain}; the domain comes from the path."""

    messages: List[ChatMessage] = Field(min_length=1)
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_output_tokens: int = Field(default=1024, ge=1, le=32_768)
    top_p: float = Field(default=1.0, gt=0.0, le=1.0)
    required_capability: Optional[RequiredCapability] = None
    timeout_seconds: Optional[float] = Field(default=None, gt=0, le=600)

    def to_invocation(self, domain: str) -> InvocationRequest:
        return InvocationRequest(domain=domain, **self.model_dump())


class BatchGenerateRequest(BaseModel):
    requests: List[GenerateRequest] = Field(min_length=1, max_length=20)


class BatchGenerateResponse(BaseModel):
    """Per-item results in request order; failures are reported, not raised."""

    results: List[InvocationResult]
    succeeded: int


class ModelPriorityRequest(BaseModel):
    order: List[str] = Field(min_length=1, description="Model names, most preferred first")


# ══════════════════════════════════════════════════════════════════════════
# Status views
# ══════════════════════════════════════════════════════════════════════════


class CooldownEntry(BaseModel):
    name: str = Field(description="Credential id or model name")
    remaining_seconds: float
    consecutive_failures: int = 0


class TokenUsage(BaseModel):
    domain: str
    daily_limit: int
    used_today: int
    near_limit: bool
    window_age_seconds: float


class StatusResponse(BaseModel):
    """What GetStatus() returns for one domain."""

    domain: str
    provider: str
    total_credentials: int
    available_credentials: int
    last_used_credential: Optional[str] = None
    cooldowns: List[CooldownEntry] = Field(default_factory=list)
    model_cooldowns: List[CooldownEntry] = Field(default_factory=list)
    available_models: List[str] = Field(default_factory=list)
    token_usage: Dict[str, TokenUsage] = Field(default_factory=dict)


class ErrorResponse(BaseModel):
    error: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable error description")
    details: Optional[dict] = Field(default=None, description="Additional error context")
    request_id: Optional[str] = Field(default=None, description="Request correlation ID")


class DomainHealth(BaseModel):
    status: str = Field(description="available, degraded or disabled")
    available_credentials: int
    available_models: int


class HealthResponse(BaseModel):
    status: str = Field(description="Overall service status: healthy, degraded, unhealthy")
    version: str
    domains: Dict[str, DomainHealth]
    uptime_seconds: float
