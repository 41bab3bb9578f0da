"""
AIGate — Model Catalog
======================

What:  An ordered list of model descriptors with cooldown-aware filtering.
Why:   Each generation domain prefers different models (chart generation
       needs structured-output strength, chat wants big context). The catalog
       answers "which models may serve this prompt right now, best first".
How:   `candidates()` filters out cooling models, models whose context window
       cannot hold the prompt plus headroom, and basic-tier models for
       demanding requests; survivors are sorted by priority.

Filtering rules, in order:
    1. cooldown_until > now                       → excluded
    2. estimated_tokens > max_context * headroom  → excluded (headroom 0.7)
    3. capability medium/high and tier == basic    → excluded

An empty result is not an error; the orchestrator turns it into
ALL_MODELS_UNAVAILABLE.
"""

import logging
import threading
import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence

from aigate.exceptions import ConfigurationError, NotFoundError
from aigate.schemas.invocation import RequiredCapability

logger = logging.getLogger(__name__)


class CapabilityTier(str, Enum):
    BASIC = "basic"
    GOOD = "good"
    EXCELLENT = "excellent"


@dataclass
class ModelDescriptor:
    name: str
    max_context_tokens: int
    priority: int
    cost_per_token: float = 0.0
    capability_tier: CapabilityTier = CapabilityTier.GOOD
    cooldown_until: Optional[float] = None

    def is_cooling(self, now: float) -> bool:
        return self.cooldown_until is not None and self.cooldown_until > now


class ModelCatalog:
    """Cooldown-aware, priority-ordered model list for one domain."""

    def __init__(
        self,
        models: Sequence[ModelDescriptor],
        context_headroom: float = 0.7,
        clock: Callable[[], float] = time.monotonic,
    ):
        if not models:
            raise ConfigurationError("ModelCatalog requires at least one model")
        if not 0 < context_headroom <= 1:
            raise ConfigurationError("context_headroom must be in (0, 1]")
        # Copies, so two catalogs built from the same table never share cooldowns.
        self._models: Dict[str, ModelDescriptor] = {m.name: replace(m) for m in models}
        self.context_headroom = context_headroom
        self._clock = clock
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._models)

    def get(self, name: str) -> ModelDescriptor:
        return self._models[name]

    @property
    def models(self) -> List[ModelDescriptor]:
        return sorted(self._models.values(), key=lambda m: m.priority)

    def candidates(
        self,
        estimated_prompt_tokens: int,
        required_capability: Optional[RequiredCapability] = None,
    ) -> List[ModelDescriptor]:
        """Models that may serve this prompt now, best priority first."""
        demanding = required_capability in (RequiredCapability.MEDIUM, RequiredCapability.HIGH)
        with self._lock:
            now = self._clock()
            eligible = [
                model
                for model in self._models.values()
                if not model.is_cooling(now)
                and estimated_prompt_tokens <= model.max_context_tokens * self.context_headroom
                and not (demanding and model.capability_tier == CapabilityTier.BASIC)
            ]
        return sorted(eligible, key=lambda m: m.priority)

    def is_available(self, model_name: str) -> bool:
        with self._lock:
            return not self._models[model_name].is_cooling(self._clock())

    def set_cooldown(self, model_name: str, duration_ms: int) -> None:
        with self._lock:
            model = self._models[model_name]
            model.cooldown_until = self._clock() + max(0, duration_ms) / 1000.0
        logger.info("Model %s in cooldown for %.0fs", model_name, duration_ms / 1000)

    def set_priority(self, order: Sequence[str]) -> List[str]:
        """
        Move the named models to the front, in the given order.

        Unlisted models keep their relative order behind them. Unknown names
        are ignored. Returns the resulting order.

        Raises:
            NotFoundError: none of the names is in this catalog.
        """
        with self._lock:
            listed = [name for name in dict.fromkeys(order) if name in self._models]
            if not listed:
                raise NotFoundError("model", ", ".join(order), context={"known": sorted(self._models)})
            current = [m.name for m in sorted(self._models.values(), key=lambda m: m.priority)]
            reordered = listed + [name for name in current if name not in listed]
            for rank, name in enumerate(reordered, start=1):
                self._models[name].priority = rank
        logger.info("Model priority set: %s", ", ".join(reordered))
        return reordered

    def reset_cooldowns(self) -> None:
        with self._lock:
            for model in self._models.values():
                model.cooldown_until = None
        logger.info("Model cooldowns cleared")

    def snapshot(self) -> List[dict]:
        with self._lock:
            now = self._clock()
            return [
                {"name": m.name, "remaining_seconds": round(m.cooldown_until - now, 3)}
                for m in self.models
                if m.is_cooling(now)
            ]


# ══════════════════════════════════════════════════════════════════════════
# Capability inference
# ══════════════════════════════════════════════════════════════════════════

# Chart kinds that need a strong model to get the Mermaid syntax right.
HIGH_COMPLEXITY_HINTS = ("gantt", "timeline", "sequence", "state", "class diagram", "architecture")
MEDIUM_COMPLEXITY_HINTS = ("flowchart", "process", "journey", "pie chart", "graph", "network")


def infer_required_capability(user_request: str) -> RequiredCapability:
    """Guess how demanding a chart request is from its wording."""
    text = user_request.lower()
    if any(hint in text for hint in HIGH_COMPLEXITY_HINTS):
        return RequiredCapability.HIGH
    if any(hint in text for hint in MEDIUM_COMPLEXITY_HINTS):
        return RequiredCapability.MEDIUM
    return RequiredCapability.LOW


# ══════════════════════════════════════════════════════════════════════════
# Built-in catalogs
# ══════════════════════════════════════════════════════════════════════════

GROQ_CHAT_MODELS = [
    ModelDescriptor("llama-3.3-70b-versatile", 128_000, 1, 0.0000007, CapabilityTier.EXCELLENT),
    ModelDescriptor("meta-llama/llama-4-maverick-17b-128e-instruct", 128_000, 2, 0.0000004, CapabilityTier.GOOD),
    ModelDescriptor("llama-3.1-8b-instant", 8192, 3, 0.0000001, CapabilityTier.BASIC),
    ModelDescriptor("meta-llama/llama-4-scout-17b-16e-instruct", 32_000, 4, 0.0000003, CapabilityTier.GOOD),
    ModelDescriptor("qwen/qwen3-32b", 32_000, 5, 0.0000005, CapabilityTier.EXCELLENT),
    ModelDescriptor("moonshotai/kimi-k2-instruct", 128_000, 6, 0.0000006, CapabilityTier.GOOD),
]

GROQ_CHART_MODELS = [
    ModelDescriptor("llama-3.3-70b-versatile", 128_000, 1, 0.0000007, CapabilityTier.EXCELLENT),
    ModelDescriptor("meta-llama/llama-4-maverick-17b-128e-instruct", 128_000, 2, 0.0000004, CapabilityTier.GOOD),
    ModelDescriptor("qwen/qwen3-32b", 32_000, 3, 0.0000005, CapabilityTier.EXCELLENT),
    ModelDescriptor("moonshotai/kimi-k2-instruct", 128_000, 4, 0.0000006, CapabilityTier.GOOD),
    ModelDescriptor("llama-3.1-8b-instant", 8192, 5, 0.0000001, CapabilityTier.BASIC),
]

GEMINI_NOTE_MODELS = [
    ModelDescriptor("gemini-2.5-flash", 1_048_576, 1, 0.0000003, CapabilityTier.EXCELLENT),
    ModelDescriptor("gemini-2.0-flash", 1_048_576, 2, 0.0000001, CapabilityTier.GOOD),
    ModelDescriptor("gemini-2.0-flash-lite", 1_048_576, 3, 0.000000075, CapabilityTier.BASIC),
]

DEFAULT_CATALOGS: Dict[str, List[ModelDescriptor]] = {
    "notes": GEMINI_NOTE_MODELS,
    "chat": GROQ_CHAT_MODELS,
    "chart": GROQ_CHART_MODELS,
    "flashcard": GROQ_CHAT_MODELS,
}
