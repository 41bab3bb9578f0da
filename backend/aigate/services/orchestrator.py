"""
AIGate — Invocation Orchestrator
================================

What:  The single `generate(request) -> result` entry point for one domain.
Why:   Note, chart, chat and flashcard generation all need the same answer
       to "which key, which model, and what now that it failed". Keeping that
       in one place means a 429 is handled identically everywhere.
How:   A bounded tenacity attempt loop. Each attempt picks the best model
       still available, asks the pool for a key, fits the prompt to the
       model, and calls the provider adapter:

           SELECT → CALL → SUCCESS              → record usage, return
                         → RATE_LIMITED         → key cooldown, rotate
                         → PAYLOAD_TOO_LARGE    → model cooldown 60s
                         → PROVIDER_OVERLOADED  → model cooldown 120s
                         → FATAL                → model cooldown 10s

Termination:
    - success
    - pool exhausted                   → ALL_CREDENTIALS_RATE_LIMITED
    - no model left                    → ALL_MODELS_UNAVAILABLE (or the last
                                          FATAL / PAYLOAD_TOO_LARGE)
    - deadline passed                  → TIMEOUT (no cooldowns applied)
    - min(keys * 2, models * keys) attempts without success
                                       → ALL_OPTIONS_EXHAUSTED

Who:   Built per domain by OrchestratorRegistry; called by routes and by
       in-process generators.

Concurrency:
    Calls run in parallel on the event loop. Pool, catalog and monitor each
    guard their own state; nothing here holds a lock across an await.
"""

import asyncio
import logging
import math
import time
import uuid
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, Sequence

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
)

from aigate.exceptions import AllCredentialsExhaustedError, ErrorKind
from aigate.middleware.request_id import request_id_var
from aigate.schemas.invocation import (
    CooldownEntry,
    InvocationRequest,
    InvocationResult,
    StatusResponse,
    TokenUsage,
)
from aigate.services.credential_pool import Credential, CredentialPool
from aigate.services.llm_base import GenerationParams, ProviderAdapter
from aigate.services.model_catalog import ModelCatalog, ModelDescriptor
from aigate.services.prompt_budgeter import PromptBudgeter, estimate_tokens
from aigate.services.token_budget import TokenBudgetMonitor

logger = logging.getLogger(__name__)


class AttemptFailed(Exception):
    """A recoverable per-attempt failure. The attempt loop retries on it."""

    def __init__(self, kind: ErrorKind, detail: str, pause_seconds: float = 0.0):
        super().__init__(f"{kind.value}: {detail}")
        self.kind = kind
        self.detail = detail
        self.pause_seconds = pause_seconds


@dataclass
class _CallState:
    call_id: str
    domain: str
    deadline: float
    timeout_seconds: float
    attempts: int = 0
    last_kind: Optional[ErrorKind] = None
    last_error: Optional[str] = None
    truncated: bool = False

    @property
    def tag(self) -> str:
        rid = request_id_var.get("")
        return f"{rid}:{self.call_id}" if rid else self.call_id


class InvocationOrchestrator:
    """
    Resilient generation for one domain over one provider.

    Contract:
        generate()          → InvocationResult, never raises for provider failures
        get_status()        → StatusResponse (no secrets)
        reset_cooldowns()   → clears key and model cooldowns
        reset_token_budget()→ zeroes the domain's daily counter
        generate_many()     → results in input order, bounded concurrency
        set_model_priority()→ reorders model preference at runtime
    """

    def __init__(
        self,
        domain: str,
        provider: ProviderAdapter,
        pool: CredentialPool,
        catalog: ModelCatalog,
        monitor: TokenBudgetMonitor,
        budgeter: Optional[PromptBudgeter] = None,
        *,
        budget_ratio: float = 0.7,
        budget_cap_tokens: int = 6000,
        payload_too_large_cooldown_ms: int = 60_000,
        overloaded_cooldown_ms: int = 120_000,
        fatal_cooldown_ms: int = 10_000,
        backoff_base_ms: int = 1000,
        backoff_max_ms: int = 30_000,
        retry_pause_cap_seconds: float = 10.0,
        request_timeout_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.domain = domain
        self.provider = provider
        self.pool = pool
        self.catalog = catalog
        self.monitor = monitor
        self.budgeter = budgeter or PromptBudgeter()
        self.budget_ratio = budget_ratio
        self.budget_cap_tokens = budget_cap_tokens
        self.payload_too_large_cooldown_ms = payload_too_large_cooldown_ms
        self.overloaded_cooldown_ms = overloaded_cooldown_ms
        self.fatal_cooldown_ms = fatal_cooldown_ms
        self.backoff_base_ms = backoff_base_ms
        self.backoff_max_ms = backoff_max_ms
        self.retry_pause_cap_seconds = retry_pause_cap_seconds
        self.request_timeout_seconds = request_timeout_seconds
        self._clock = clock
        self._sleep = sleep

    # ── Generation ────────────────────────────────────────────────────────

    async def generate(self, request: InvocationRequest) -> InvocationResult:
        """
        Run one generation call to a terminal result.

        The whole call, pauses included, is bounded by
        `request.timeout_seconds` (or the configured default).
        """
        timeout = request.timeout_seconds or self.request_timeout_seconds
        state = _CallState(
            call_id=uuid.uuid4().hex[:8],
            domain=request.domain or self.domain,
            deadline=self._clock() + timeout,
            timeout_seconds=timeout,
        )

        estimated = estimate_tokens(request.prompt_text())
        candidates = self.catalog.candidates(estimated, request.required_capability)
        logger.info(
            "[%s] %s generation: ~%d prompt tokens, %d candidate models",
            state.tag,
            self.domain,
            estimated,
            len(candidates),
        )
        if not candidates:
            logger.warning("[%s] No model can serve this request", state.tag)
            return self._failure(state, ErrorKind.ALL_MODELS_UNAVAILABLE)

        if self.monitor.is_near_limit(state.domain):
            logger.warning("[%s] Domain %s is near its daily token limit", state.tag, state.domain)

        max_attempts = min(len(self.pool) * 2, len(candidates) * len(self.pool))
        retrying = AsyncRetrying(
            stop=stop_after_attempt(max_attempts),
            wait=self._pause_for(state),
            retry=retry_if_exception_type(AttemptFailed),
            before_sleep=before_sleep_log(logger, logging.INFO),
            sleep=self._sleep,
            reraise=True,
        )

        result: Optional[InvocationResult] = None
        try:
            async for attempt in retrying:
                with attempt:
                    result = await self._attempt(request, candidates, state)
        except AttemptFailed:
            logger.error(
                "[%s] All options exhausted after %d attempts; last error: %s",
                state.tag,
                state.attempts,
                state.last_error,
            )
            return self._failure(state, ErrorKind.ALL_OPTIONS_EXHAUSTED)
        return result

    async def generate_many(
        self,
        requests: Sequence[InvocationRequest],
        max_concurrency: Optional[int] = None,
    ) -> List[InvocationResult]:
        """
        Run several generations concurrently; results keep the input order.

        At most `max_concurrency` calls are in flight (default: one per key),
        so a batch cannot burst every key into a 429 at once. A failed item
        does not affect the others.
        """
        limit = asyncio.Semaphore(max_concurrency or len(self.pool))

        async def run(request: InvocationRequest) -> InvocationResult:
            async with limit:
                return await self.generate(request)

        results = await asyncio.gather(*(run(request) for request in requests))
        logger.info(
            "%s batch: %d/%d succeeded",
            self.domain,
            sum(1 for r in results if r.success),
            len(results),
        )
        return list(results)

    async def _attempt(
        self,
        request: InvocationRequest,
        candidates: List[ModelDescriptor],
        state: _CallState,
    ) -> InvocationResult:
        remaining = state.deadline - self._clock()
        if remaining <= 0:
            logger.warning("[%s] Deadline passed after %d attempts", state.tag, state.attempts)
            state.last_error = state.last_error or f"No result within {state.timeout_seconds:.1f}s"
            return self._failure(state, ErrorKind.TIMEOUT)

        model = next((m for m in candidates if self.catalog.is_available(m.name)), None)
        if model is None:
            kind = ErrorKind.ALL_MODELS_UNAVAILABLE
            if state.last_kind in (ErrorKind.FATAL, ErrorKind.PAYLOAD_TOO_LARGE):
                kind = state.last_kind
            logger.warning("[%s] No candidate model left (%s)", state.tag, kind.value)
            return self._failure(state, kind)

        try:
            credential = self.pool.next()
        except AllCredentialsExhaustedError as e:
            return self._failure(state, ErrorKind.ALL_CREDENTIALS_RATE_LIMITED, e.retry_after_ms)

        messages, truncated = self.budgeter.truncate_messages(request.messages, self.prompt_budget_for(model))
        state.truncated = truncated
        state.attempts += 1
        params = GenerationParams(
            temperature=request.temperature,
            max_output_tokens=request.max_output_tokens,
            top_p=request.top_p,
        )

        logger.info(
            "[%s] Attempt %d: model=%s credential=%s%s",
            state.tag,
            state.attempts,
            model.name,
            credential.id,
            " (prompt truncated)" if truncated else "",
        )
        start_time = time.perf_counter()
        try:
            reply = await asyncio.wait_for(
                self.provider.invoke(credential.secret, model.name, messages, params, timeout=remaining),
                timeout=remaining,
            )
        except (asyncio.TimeoutError, TimeoutError):
            state.last_error = f"No response within {state.timeout_seconds:.1f}s"
            logger.warning("[%s] Attempt %d timed out on %s", state.tag, state.attempts, model.name)
            return self._failure(state, ErrorKind.TIMEOUT)
        except Exception as e:
            return self._handle_failure(e, model, credential, state)

        self.pool.mark_succeeded(credential.id)
        usage = reply.usage_tokens
        if usage is None:
            usage = estimate_tokens("\n".join(m.content for m in messages)) + estimate_tokens(reply.content)
        self.monitor.record(state.domain, usage)

        logger.info(
            "[%s] Succeeded on %s with %s in %.0fms (%d tokens, attempt %d)",
            state.tag,
            model.name,
            credential.id,
            (time.perf_counter() - start_time) * 1000,
            usage,
            state.attempts,
        )
        return InvocationResult(
            success=True,
            content=reply.content,
            usage_tokens=usage,
            model_used=model.name,
            credential_used=credential.id,
            prompt_was_truncated=truncated,
            attempts=state.attempts,
        )

    def _handle_failure(
        self,
        error: Exception,
        model: ModelDescriptor,
        credential: Credential,
        state: _CallState,
    ) -> InvocationResult:
        """Apply the cooldown for this failure kind, then either end the call or retry."""
        kind = self.provider.classify_error(error)
        state.last_kind = kind
        state.last_error = f"{type(error).__name__}: {error}"
        logger.warning(
            "[%s] Attempt %d failed on %s/%s (%s): %s",
            state.tag,
            state.attempts,
            model.name,
            credential.id,
            kind.value,
            str(error)[:300],
        )

        pause_seconds = 0.0
        if kind == ErrorKind.RATE_LIMITED:
            delay_ms = self.provider.extract_retry_after_ms(error)
            if delay_ms is None:
                delay_ms = self.backoff_delay_ms(self.pool.consecutive_failures(credential.id))
            self.pool.mark_failed(credential.id, delay_ms)
            if self.pool.available_count() == 0:
                logger.warning("[%s] Every credential is rate limited", state.tag)
                return self._failure(
                    state,
                    ErrorKind.ALL_CREDENTIALS_RATE_LIMITED,
                    self.pool.earliest_recovery_ms(),
                )
            pause_seconds = self._rotation_pause_seconds()
        elif kind == ErrorKind.PAYLOAD_TOO_LARGE:
            self.catalog.set_cooldown(model.name, self.payload_too_large_cooldown_ms)
        elif kind == ErrorKind.PROVIDER_OVERLOADED:
            self.catalog.set_cooldown(model.name, self.overloaded_cooldown_ms)
        else:
            self.catalog.set_cooldown(model.name, self.fatal_cooldown_ms)

        raise AttemptFailed(kind, state.last_error, pause_seconds) from error

    def _pause_for(self, state: _CallState) -> Callable[[RetryCallState], float]:
        """tenacity wait: the failed attempt's pause, clipped to the time left."""

        def wait(retry_state: RetryCallState) -> float:
            error = retry_state.outcome.exception() if retry_state.outcome else None
            pause = getattr(error, "pause_seconds", 0.0)
            return max(0.0, min(pause, state.deadline - self._clock()))

        return wait

    def _rotation_pause_seconds(self) -> float:
        """
        Pause before retrying on another key after a 429.

        Zero while some usable key has no recent failure. When every usable
        key has failed before and only just recovered, back off by the
        smallest failure count, capped at `retry_pause_cap_seconds`.
        """
        failures = self.pool.fewest_failures_available()
        if not failures:
            return 0.0
        return min(self.backoff_delay_ms(failures) / 1000.0, self.retry_pause_cap_seconds)

    def backoff_delay_ms(self, consecutive_failures: int) -> int:
        """Fallback cooldown for a 429 without a retry hint."""
        return min(self.backoff_base_ms * (2 ** consecutive_failures), self.backoff_max_ms)

    def prompt_budget_for(self, model: ModelDescriptor) -> int:
        return min(int(model.max_context_tokens * self.budget_ratio), self.budget_cap_tokens)

    def _failure(
        self,
        state: _CallState,
        kind: ErrorKind,
        retry_after_ms: Optional[int] = None,
    ) -> InvocationResult:
        return InvocationResult(
            success=False,
            error=kind,
            detail=state.last_error,
            attempts=state.attempts,
            prompt_was_truncated=state.truncated,
            retry_after_seconds=math.ceil(retry_after_ms / 1000) if retry_after_ms is not None else None,
        )

    # ── Operator operations ───────────────────────────────────────────────

    def get_status(self) -> StatusResponse:
        usage = self.monitor.snapshot(self.domain)
        return StatusResponse(
            domain=self.domain,
            provider=self.provider.name,
            total_credentials=len(self.pool),
            available_credentials=self.pool.available_count(),
            last_used_credential=self.pool.last_used_id,
            cooldowns=[CooldownEntry(**entry) for entry in self.pool.snapshot()],
            model_cooldowns=[CooldownEntry(**entry) for entry in self.catalog.snapshot()],
            available_models=[m.name for m in self.catalog.models if self.catalog.is_available(m.name)],
            token_usage={name: TokenUsage(**values) for name, values in usage.items()},
        )

    def reset_cooldowns(self) -> None:
        self.pool.reset_cooldowns()
        self.catalog.reset_cooldowns()
        logger.info("All cooldowns reset for %s", self.domain)

    def reset_token_budget(self, domain: Optional[str] = None) -> None:
        self.monitor.reset(domain or self.domain)

    def set_model_priority(self, order: Sequence[str]) -> List[str]:
        """Reorder model preference for later calls; calls in flight keep their order."""
        reordered = self.catalog.set_priority(order)
        logger.warning("Model priority for %s changed to %s", self.domain, reordered)
        return reordered
