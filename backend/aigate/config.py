"""
AIGate — Application Configuration
==================================

What:  Centralized configuration management using Pydantic Settings.
Why:   Credential lists, cooldown windows and daily budgets are all operator
       knobs; loading them through one validated object means a typo in an
       env var fails at startup, not on the first rate limit.
How:   Pydantic Settings reads environment variables (or .env), validates
       ranges, and exposes a module-level `settings` object. Orchestrators
       receive the values they need at construction time, so tests can build
       their own `Settings(...)` without touching the environment.

Credential sources:
    GEMINI_API_KEYS   comma-separated list (preferred)
    GEMINI_API_KEY, GEMINI_API_KEY_1..3   legacy single-key variables
    GROQ_API_KEYS     comma-separated list shared by all Groq domains
    GROQ_CHAT_API_KEY / GROQ_CHART_API_KEY   dedicated per-domain keys
"""

from typing import Dict, List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

# Values shipped in .env.example files; never a real key.
PLACEHOLDER_KEYS = {
    "your_gemini_api_key_here",
    "your_groq_api_key_here",
    "your_first_api_key",
    "your_second_api_key",
    "your_third_api_key",
}


def split_keys(*values: str) -> List[str]:
    """Flatten comma-separated key strings, dropping blanks, placeholders and duplicates."""
    keys: List[str] = []
    for value in values:
        for raw in (value or "").split(","):
            key = raw.strip()
            if key and key not in PLACEHOLDER_KEYS and key not in keys:
                keys.append(key)
    return keys


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings have development defaults. Production deployments MUST
    provide at least one credential per provider they intend to use.
    """

    # ── Google Gemini (notes domain) ──────────────────────────────────────
    gemini_api_keys: str = Field(default="", description="Comma-separated Gemini API keys")
    gemini_api_key: str = Field(default="")
    gemini_api_key_1: str = Field(default="")
    gemini_api_key_2: str = Field(default="")
    gemini_api_key_3: str = Field(default="")

    # ── Groq (chat, chart, flashcard domains) ─────────────────────────────
    groq_api_keys: str = Field(default="", description="Comma-separated Groq API keys")
    groq_api_key: str = Field(default="")
    groq_chat_api_key: str = Field(default="")
    groq_chart_api_key: str = Field(default="")

    # ── Failure handling ──────────────────────────────────────────────────
    # Model cooldowns per failure class, in seconds.
    payload_too_large_cooldown: int = Field(default=60, ge=1, le=3600)
    overloaded_cooldown: int = Field(default=120, ge=1, le=3600)
    fatal_cooldown: int = Field(default=10, ge=1, le=3600)

    # Exponential fallback when a 429 carries no retry hint:
    # min(backoff_base_ms * 2^consecutive_failures, backoff_max_ms)
    backoff_base_ms: int = Field(default=1000, ge=10, le=60_000)
    backoff_max_ms: int = Field(default=30_000, ge=100, le=600_000)

    # Longest single pause between attempts, regardless of the retry hint.
    retry_pause_cap_seconds: float = Field(default=10.0, ge=0, le=60)

    # Whole-call deadline used when the caller does not pass one.
    request_timeout_seconds: float = Field(default=60.0, gt=0, le=600)

    # ── Token budgets ─────────────────────────────────────────────────────
    notes_daily_token_limit: int = Field(default=1_000_000, ge=1000)
    chat_daily_token_limit: int = Field(default=100_000, ge=1000)
    chart_daily_token_limit: int = Field(default=50_000, ge=1000)
    flashcard_daily_token_limit: int = Field(default=100_000, ge=1000)
    budget_reset_interval_seconds: int = Field(default=86_400, ge=60)

    # ── Server ────────────────────────────────────────────────────────────
    backend_host: str = Field(default="0.0.0.0")
    backend_port: int = Field(default=8000, ge=1024, le=65535)
    cors_origins: str = Field(default="http://localhost:3000")
    log_level: str = Field(default="INFO")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensures log level is a valid Python logging level name."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper = v.upper()
        if upper not in valid_levels:
            raise ValueError(f"Invalid log_level '{v}'. Must be one of: {valid_levels}")
        return upper

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore",
    }

    @property
    def cors_origins_list(self) -> List[str]:
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @property
    def gemini_key_list(self) -> List[str]:
        return split_keys(
            self.gemini_api_keys,
            self.gemini_api_key,
            self.gemini_api_key_1,
            self.gemini_api_key_2,
            self.gemini_api_key_3,
        )

    def groq_keys_for(self, domain: str) -> List[str]:
        """
        Groq keys for a domain: the domain's dedicated key first, then the shared pool.

        Flashcard generation historically shared the chat key.
        """
        dedicated = {
            "chat": self.groq_chat_api_key,
            "flashcard": self.groq_chat_api_key,
            "chart": self.groq_chart_api_key,
        }.get(domain, "")
        return split_keys(dedicated, self.groq_api_keys, self.groq_api_key)

    @property
    def daily_token_limits(self) -> Dict[str, int]:
        return {
            "notes": self.notes_daily_token_limit,
            "chat": self.chat_daily_token_limit,
            "chart": self.chart_daily_token_limit,
            "flashcard": self.flashcard_daily_token_limit,
        }

    def validate_required_for_production(self) -> None:
        """
        What:  Validates that at least one provider has credentials.
        When:  Called during app startup (lifespan).
        Why:   A pool with zero credentials turns every call into
               ALL_CREDENTIALS_RATE_LIMITED, which reads like an outage.
        """
        errors = []
        if not self.gemini_key_list:
            errors.append(
                "No Gemini keys configured (GEMINI_API_KEYS or GEMINI_API_KEY_1..3); "
                "the notes domain is disabled."
            )
        if not self.groq_keys_for("chat"):
            errors.append(
                "No Groq keys configured (GROQ_API_KEYS or GROQ_CHAT_API_KEY); "
                "chat, chart and flashcard domains are disabled."
            )
        if errors:
            raise ValueError(
                "Configuration validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
            )


settings = Settings()
