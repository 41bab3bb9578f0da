"""
AIGate — Test Configuration (conftest.py)
=========================================

What:  Shared pytest fixtures for the entire test suite.
Why:   Orchestrator behavior depends on time and on provider responses;
       both are replaced with deterministic fakes here.
How:   A FakeClock is injected into pools, catalogs and monitors; a
       RecordingSleep replaces asyncio.sleep in the attempt loop; a
       ScriptedProvider plays back a list of replies and errors.

Fixture Hierarchy:
    Function-scoped (created fresh for each test):
    ├── clock:              FakeClock starting at t=1000s
    ├── sleep:              RecordingSleep (records pauses, never waits)
    ├── provider:           ScriptedProvider with an empty script
    ├── make_orchestrator:  factory for orchestrators over fakes
    ├── orchestrator:       chat orchestrator, 3 keys, 2 models
    ├── registry:           chat enabled, notes disabled
    └── test_client:        HTTPX AsyncClient over create_app(registry)
"""

import asyncio
import os
from types import SimpleNamespace
from typing import List, Optional

# Override settings for testing BEFORE any aigate imports
# Why: Prevents tests from picking up real API keys from the shell
for _var in (
    "GEMINI_API_KEYS",
    "GEMINI_API_KEY",
    "GEMINI_API_KEY_1",
    "GEMINI_API_KEY_2",
    "GEMINI_API_KEY_3",
    "GROQ_API_KEYS",
    "GROQ_API_KEY",
    "GROQ_CHAT_API_KEY",
    "GROQ_CHART_API_KEY",
):
    os.environ[_var] = ""
os.environ["LOG_LEVEL"] = "WARNING"

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from aigate.services.credential_pool import CredentialPool
from aigate.services.llm_base import (
    ProviderAdapter,
    ProviderReply,
    classify_by_message,
    status_code_of,
)
from aigate.services.model_catalog import CapabilityTier, ModelDescriptor, ModelCatalog
from aigate.services.orchestrator import InvocationOrchestrator
from aigate.services.registry import OrchestratorRegistry
from aigate.services.token_budget import TokenBudgetMonitor


# ══════════════════════════════════════════════════════════════════════════
# Fakes
# ══════════════════════════════════════════════════════════════════════════

class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Stands in for asyncio.sleep; optionally advances a FakeClock."""

    def __init__(self, clock: Optional[FakeClock] = None):
        self.calls: List[float] = []
        self.clock = clock

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        if self.clock is not None:
            self.clock.advance(seconds)


class ScriptedError(Exception):
    """A provider error with an optional HTTP status, like an SDK's APIStatusError."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


# Script entry that never answers; used for deadline tests.
HANG = object()


class ScriptedProvider(ProviderAdapter):
    """
    Plays back `outcomes` in order: a str or ProviderReply is a success, an
    exception is raised, HANG blocks. An exhausted script answers "ok".
    """

    name = "scripted"

    def __init__(self, outcomes=None, healthy: bool = True):
        self.outcomes = list(outcomes or [])
        self.calls: List[SimpleNamespace] = []
        self.healthy = healthy
        self.checked_secrets: List[str] = []
        self.closed = 0

    async def invoke(self, secret, model, messages, params, timeout):
        self.calls.append(
            SimpleNamespace(secret=secret, model=model, messages=list(messages), params=params, timeout=timeout)
        )
        outcome = self.outcomes.pop(0) if self.outcomes else "ok"
        if outcome is HANG:
            await asyncio.sleep(3600)
        if isinstance(outcome, BaseException):
            raise outcome
        if isinstance(outcome, str):
            return ProviderReply(content=outcome, usage_tokens=10)
        return outcome

    def classify_error(self, error):
        return classify_by_message(str(error), status_code_of(error))

    async def aclose(self):
        self.closed += 1

    async def health_check(self, secret):
        self.checked_secrets.append(secret)
        return self.healthy


def rate_limited(message: str = "Rate limit exceeded. Please retry in 5s") -> ScriptedError:
    return ScriptedError(message, status_code=429)


# ══════════════════════════════════════════════════════════════════════════
# Function-Scoped Fixtures
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def provider():
    return ScriptedProvider()


@pytest.fixture
def two_models():
    return [
        ModelDescriptor("model-a", 128_000, 1, capability_tier=CapabilityTier.EXCELLENT),
        ModelDescriptor("model-b", 32_000, 2, capability_tier=CapabilityTier.GOOD),
    ]


@pytest.fixture
def make_orchestrator(clock, sleep):
    """
    Factory for orchestrators over fakes.

    Usage:
        orch = make_orchestrator(provider, n_keys=3, models=[...])
    Keys are "secret-1".."secret-N" with ids "key-1".."key-N".
    """

    def _make(provider, n_keys=3, models=None, domain="chat", daily_limit=100_000, **kwargs):
        pool = CredentialPool.from_secrets(
            [f"secret-{i}" for i in range(1, n_keys + 1)], prefix="key", clock=clock
        )
        catalog = ModelCatalog(models or [ModelDescriptor("model-a", 128_000, 1)], clock=clock)
        monitor = TokenBudgetMonitor({domain: daily_limit}, clock=clock)
        kwargs.setdefault("sleep", sleep)
        return InvocationOrchestrator(
            domain, provider, pool, catalog, monitor, clock=clock, **kwargs
        )

    return _make


@pytest.fixture
def orchestrator(make_orchestrator, provider, two_models):
    return make_orchestrator(provider, n_keys=3, models=two_models)


@pytest.fixture
def registry(orchestrator):
    return OrchestratorRegistry({"chat": orchestrator}, orchestrator.monitor, disabled=["notes"])


@pytest_asyncio.fixture
async def test_client(registry):
    """
    HTTPX AsyncClient routed straight into the app via ASGITransport.

    The registry is injected, so no lifespan and no real provider runs.
    """
    from aigate.main import create_app

    app = create_app(registry=registry)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
