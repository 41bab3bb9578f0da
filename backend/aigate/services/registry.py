"""
AIGate — Orchestrator Registry
==============================

What:  Builds and holds one InvocationOrchestrator per generation domain.
Why:   Each domain owns its keys, its model table and its truncation
       budget, but all domains share one daily token monitor so operators
       see usage side by side.
How:   `build_registry(settings)` wires pools, catalogs and providers from
       configuration. The application stores the registry on `app.state`;
       tests build their own with fake providers.

Domains:
    notes     → Gemini (GEMINI_API_KEYS)
    chat      → Groq   (GROQ_CHAT_API_KEY, GROQ_API_KEYS)
    chart     → Groq   (GROQ_CHART_API_KEY, GROQ_API_KEYS)
    flashcard → Groq   (GROQ_CHAT_API_KEY, GROQ_API_KEYS)

A domain without keys is registered as disabled rather than failing
startup; calls to it answer 404 and /health reports it.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Iterable, List, Mapping, Optional

from aigate.config import Settings
from aigate.exceptions import NotFoundError
from aigate.services.credential_pool import CredentialPool
from aigate.services.gemini_service import GeminiProvider
from aigate.services.groq_service import GroqProvider
from aigate.services.llm_base import ProviderAdapter
from aigate.services.model_catalog import DEFAULT_CATALOGS, ModelCatalog
from aigate.services.orchestrator import InvocationOrchestrator
from aigate.services.token_budget import TokenBudgetMonitor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DomainProfile:
    provider: str
    # Prompt budget per model: min(max_context * budget_ratio, budget_cap_tokens)
    budget_ratio: float
    budget_cap_tokens: int


DOMAIN_PROFILES: Dict[str, DomainProfile] = {
    "notes": DomainProfile("gemini", 0.7, 200_000),
    "chat": DomainProfile("groq", 0.7, 6000),
    "chart": DomainProfile("groq", 0.6, 5000),
    "flashcard": DomainProfile("groq", 0.7, 6000),
}


class OrchestratorRegistry:
    """Domain name → orchestrator, plus the shared token monitor."""

    def __init__(
        self,
        orchestrators: Mapping[str, InvocationOrchestrator],
        monitor: TokenBudgetMonitor,
        disabled: Iterable[str] = (),
    ):
        self._orchestrators = dict(orchestrators)
        self.monitor = monitor
        self.disabled: List[str] = sorted(disabled)

    def __contains__(self, domain: str) -> bool:
        return domain in self._orchestrators

    @property
    def domains(self) -> List[str]:
        return sorted(self._orchestrators)

    def get(self, domain: str) -> InvocationOrchestrator:
        orchestrator = self._orchestrators.get(domain)
        if orchestrator is None:
            context = {"configured_domains": self.domains}
            if domain in self.disabled:
                context["reason"] = "no credentials configured"
            raise NotFoundError(resource="domain", resource_id=domain, context=context)
        return orchestrator

    async def aclose(self) -> None:
        """Close each distinct provider adapter once."""
        providers = {id(o.provider): o.provider for o in self._orchestrators.values()}
        for provider in providers.values():
            await provider.aclose()


def build_registry(
    settings: Settings,
    providers: Optional[Mapping[str, ProviderAdapter]] = None,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> OrchestratorRegistry:
    """Wire every domain in DOMAIN_PROFILES from `settings`."""
    providers = providers or {"gemini": GeminiProvider(), "groq": GroqProvider()}
    monitor = TokenBudgetMonitor(settings.daily_token_limits, clock=clock)

    orchestrators: Dict[str, InvocationOrchestrator] = {}
    disabled: List[str] = []
    for domain, profile in DOMAIN_PROFILES.items():
        if profile.provider == "gemini":
            keys = settings.gemini_key_list
        else:
            keys = settings.groq_keys_for(domain)
        if not keys:
            logger.warning("Domain %s disabled: no %s API keys configured", domain, profile.provider)
            disabled.append(domain)
            continue

        orchestrators[domain] = InvocationOrchestrator(
            domain=domain,
            provider=providers[profile.provider],
            pool=CredentialPool.from_secrets(keys, prefix=f"{profile.provider}-{domain}", clock=clock),
            catalog=ModelCatalog(DEFAULT_CATALOGS[domain], clock=clock),
            monitor=monitor,
            budget_ratio=profile.budget_ratio,
            budget_cap_tokens=profile.budget_cap_tokens,
            payload_too_large_cooldown_ms=settings.payload_too_large_cooldown * 1000,
            overloaded_cooldown_ms=settings.overloaded_cooldown * 1000,
            fatal_cooldown_ms=settings.fatal_cooldown * 1000,
            backoff_base_ms=settings.backoff_base_ms,
            backoff_max_ms=settings.backoff_max_ms,
            retry_pause_cap_seconds=settings.retry_pause_cap_seconds,
            request_timeout_seconds=settings.request_timeout_seconds,
            clock=clock,
            sleep=sleep,
        )
        logger.info(
            "Domain %s ready: %s with %d keys, %d models",
            domain,
            profile.provider,
            len(keys),
            len(DEFAULT_CATALOGS[domain]),
        )

    return OrchestratorRegistry(orchestrators, monitor, disabled)
