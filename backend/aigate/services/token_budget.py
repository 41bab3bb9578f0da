"""
AIGate — Token Budget Monitor
=============================

What:  Per-domain daily token accounting with a rolling 24h window.
Why:   Chart generation and chat draw on separate free-tier allowances;
       operators want to see when a domain is about to run dry.
How:   `record()` accumulates usage. At >= 90% of the daily limit the domain
       is "near limit" and a warning is logged.

Soft limit:
    Active → NearLimit → Exhausted is observed, never enforced. The provider
    is the real rate-limiting authority; once it starts refusing, the
    orchestrator's 429 handling takes over. Calls past the limit still run.

Reset:
    Lazily, whenever a domain is touched after its window has aged 24h, and
    eagerly by `run_periodic_reset()`, a coroutine the application lifespan
    runs as a background task.
"""

import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Mapping, Optional

logger = logging.getLogger(__name__)

DAY_SECONDS = 24 * 60 * 60
NEAR_LIMIT_RATIO = 0.9


@dataclass
class TokenBudget:
    domain: str
    daily_limit: int
    used_today: int = 0
    window_started_at: float = 0.0


class TokenBudgetMonitor:
    """Tracks usage for any number of independent domains."""

    def __init__(
        self,
        daily_limits: Mapping[str, int],
        default_daily_limit: int = 100_000,
        window_seconds: float = DAY_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._clock = clock
        self.window_seconds = window_seconds
        self.default_daily_limit = default_daily_limit
        self._lock = threading.Lock()
        now = clock()
        self._budgets: Dict[str, TokenBudget] = {
            domain: TokenBudget(domain, limit, 0, now) for domain, limit in daily_limits.items()
        }

    def _budget(self, domain: str) -> TokenBudget:
        budget = self._budgets.get(domain)
        if budget is None:
            budget = TokenBudget(domain, self.default_daily_limit, 0, self._clock())
            self._budgets[domain] = budget
        return budget

    def record(self, domain: str, tokens_used: int) -> None:
        with self._lock:
            budget = self._budget(domain)
            self._reset_if_expired_locked(budget)
            was_near = budget.used_today >= budget.daily_limit * NEAR_LIMIT_RATIO
            budget.used_today += max(0, tokens_used)
            used, limit = budget.used_today, budget.daily_limit
            now_near = used >= limit * NEAR_LIMIT_RATIO

        logger.debug("Domain %s used %d tokens (total %d/%d)", domain, tokens_used, used, limit)
        if used > limit:
            logger.warning("Domain %s is over its daily token limit: %d/%d", domain, used, limit)
        elif now_near and not was_near:
            logger.warning("Approaching daily token limit for %s: %d/%d", domain, used, limit)

    def is_near_limit(self, domain: str) -> bool:
        with self._lock:
            budget = self._budget(domain)
            self._reset_if_expired_locked(budget)
            return budget.used_today >= budget.daily_limit * NEAR_LIMIT_RATIO

    def reset_if_expired(self, domain: str) -> bool:
        """Reset the domain if its window is at least 24h old. Returns True if it reset."""
        with self._lock:
            return self._reset_if_expired_locked(self._budget(domain))

    def _reset_if_expired_locked(self, budget: TokenBudget) -> bool:
        now = self._clock()
        if now - budget.window_started_at < self.window_seconds:
            return False
        logger.info(
            "Daily token window for %s expired; resetting (used %d/%d)",
            budget.domain,
            budget.used_today,
            budget.daily_limit,
        )
        budget.used_today = 0
        budget.window_started_at = now
        return True

    def reset(self, domain: str) -> None:
        """Operator reset: zero usage and start a new window now."""
        with self._lock:
            budget = self._budget(domain)
            budget.used_today = 0
            budget.window_started_at = self._clock()
        logger.info("Daily token counter reset for %s", domain)

    def reset_all(self) -> None:
        with self._lock:
            domains = list(self._budgets)
        for domain in domains:
            self.reset(domain)

    def snapshot(self, domain: Optional[str] = None) -> Dict[str, dict]:
        with self._lock:
            now = self._clock()
            if domain is not None:
                self._budget(domain)
            budgets = [self._budgets[domain]] if domain is not None else list(self._budgets.values())
            for budget in budgets:
                self._reset_if_expired_locked(budget)
            return {
                b.domain: {
                    "domain": b.domain,
                    "daily_limit": b.daily_limit,
                    "used_today": b.used_today,
                    "near_limit": b.used_today >= b.daily_limit * NEAR_LIMIT_RATIO,
                    "window_age_seconds": round(now - b.window_started_at, 3),
                }
                for b in budgets
            }

    async def run_periodic_reset(self, interval_seconds: float = DAY_SECONDS) -> None:
        """
        Reset every domain each `interval_seconds`, until cancelled.

        Runs as a background task, decoupled from request handling.
        """
        logger.info("Token budget reset task started (every %ds)", int(interval_seconds))
        try:
            while True:
                await asyncio.sleep(interval_seconds)
                self.reset_all()
        except asyncio.CancelledError:
            logger.info("Token budget reset task stopped")
            raise
