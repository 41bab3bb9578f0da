"""
AIGate — Credential Pool
========================

What:  Round-robin rotation over a provider's API keys with per-key cooldowns.
Why:   Free-tier keys hit their quota independently. Rotating to the next key
       on a 429 keeps a request alive instead of failing it.
How:   A cursor walks the key list cyclically, skipping keys whose
       `cooldown_until` is in the future. One full scan that finds nothing
       triggers a sweep of elapsed cooldowns and exactly one more scan; after
       that the pool raises AllCredentialsExhaustedError.

Bounded scan:
    The rotation is a finite loop over at most 2 * N slots. A pool whose
    every key fails between two sweeps reports exhaustion instead of
    spinning.

Thread Safety:
    Cursor and cooldown state are guarded by a threading.Lock. Critical
    sections never await, so the lock is safe to take from coroutines.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence

from aigate.config import PLACEHOLDER_KEYS
from aigate.exceptions import AllCredentialsExhaustedError, ConfigurationError

logger = logging.getLogger(__name__)


@dataclass
class Credential:
    """One API key. `secret` never appears in logs or status output."""

    id: str
    secret: str
    cooldown_until: Optional[float] = None
    consecutive_failures: int = 0

    def is_cooling(self, now: float) -> bool:
        return self.cooldown_until is not None and self.cooldown_until > now


class CredentialPool:
    """
    Owns a fixed set of credentials for one provider.

    Contract:
        next()           → Credential, or raises AllCredentialsExhaustedError
        mark_failed()    → cooldown + advance cursor past the failed key
        mark_succeeded() → reset consecutive failure count
        clean_expired()  → clear cooldowns whose time has passed
    """

    def __init__(
        self,
        credentials: Sequence[Credential],
        clock: Callable[[], float] = time.monotonic,
    ):
        if not credentials:
            raise ConfigurationError("CredentialPool requires at least one credential")
        ids = [c.id for c in credentials]
        if len(set(ids)) != len(ids):
            raise ConfigurationError("Credential ids must be unique", context={"ids": ids})

        self._credentials: List[Credential] = list(credentials)
        self._index: Dict[str, int] = {c.id: i for i, c in enumerate(self._credentials)}
        self._clock = clock
        self._lock = threading.Lock()
        # Position of the next slot to inspect.
        self._cursor = 0
        self.last_used_id: Optional[str] = None

    @classmethod
    def from_secrets(
        cls,
        secrets: Sequence[str],
        prefix: str = "key",
        clock: Callable[[], float] = time.monotonic,
    ) -> "CredentialPool":
        """
        Build a pool with ids `<prefix>-1`, `<prefix>-2`, ... in configuration order.

        Blank and placeholder secrets are skipped.
        """
        usable = [s.strip() for s in secrets if s and s.strip() and s.strip() not in PLACEHOLDER_KEYS]
        credentials = [
            Credential(id=f"{prefix}-{i}", secret=secret)
            for i, secret in enumerate(usable, start=1)
        ]
        return cls(credentials, clock=clock)

    def __len__(self) -> int:
        return len(self._credentials)

    @property
    def credentials(self) -> List[Credential]:
        return list(self._credentials)

    def next(self) -> Credential:
        """
        Return the next usable credential in round-robin order.

        Raises:
            AllCredentialsExhaustedError: every credential is cooling down after
                a sweep. `retry_after_ms` says when the earliest one recovers.
        """
        with self._lock:
            now = self._clock()
            credential = self._scan(now)
            if credential is None:
                self._clean_expired_locked(now)
                credential = self._scan(now)
            if credential is None:
                retry_after_ms = self._earliest_recovery_ms_locked(now)
                logger.warning(
                    "All %d credentials cooling down; earliest recovers in %dms",
                    len(self._credentials),
                    retry_after_ms,
                )
                raise AllCredentialsExhaustedError(retry_after_ms=retry_after_ms)
            return credential

    def _scan(self, now: float) -> Optional[Credential]:
        size = len(self._credentials)
        for offset in range(size):
            slot = (self._cursor + offset) % size
            candidate = self._credentials[slot]
            if not candidate.is_cooling(now):
                self._cursor = (slot + 1) % size
                return candidate
        return None

    def mark_failed(self, credential_id: str, cooldown_ms: int) -> None:
        """Put a credential in cooldown and move the cursor past it."""
        with self._lock:
            slot = self._index[credential_id]
            credential = self._credentials[slot]
            credential.consecutive_failures += 1
            credential.cooldown_until = self._clock() + max(0, cooldown_ms) / 1000.0
            if self._cursor == slot:
                self._cursor = (slot + 1) % len(self._credentials)
        logger.info(
            "Credential %s cooling down for %dms (consecutive failures: %d)",
            credential_id,
            cooldown_ms,
            credential.consecutive_failures,
        )

    def mark_succeeded(self, credential_id: str) -> None:
        with self._lock:
            credential = self._credentials[self._index[credential_id]]
            credential.consecutive_failures = 0
            self.last_used_id = credential_id

    def consecutive_failures(self, credential_id: str) -> int:
        with self._lock:
            return self._credentials[self._index[credential_id]].consecutive_failures

    def clean_expired(self) -> int:
        """Clear cooldowns that have elapsed. Returns how many credentials recovered."""
        with self._lock:
            return self._clean_expired_locked(self._clock())

    def _clean_expired_locked(self, now: float) -> int:
        recovered = 0
        for credential in self._credentials:
            if credential.cooldown_until is not None and credential.cooldown_until <= now:
                credential.cooldown_until = None
                recovered += 1
                logger.info("Credential %s is available again", credential.id)
        return recovered

    def earliest_recovery_ms(self) -> Optional[int]:
        """Milliseconds until the first cooling credential recovers; None if none is cooling."""
        with self._lock:
            return self._earliest_recovery_ms_locked(self._clock())

    def _earliest_recovery_ms_locked(self, now: float) -> Optional[int]:
        cooling = [c.cooldown_until for c in self._credentials if c.is_cooling(now)]
        if not cooling:
            return None
        return max(0, int((min(cooling) - now) * 1000))

    def available_count(self) -> int:
        with self._lock:
            now = self._clock()
            self._clean_expired_locked(now)
            return sum(1 for c in self._credentials if not c.is_cooling(now))

    def first_available(self) -> Optional[Credential]:
        """A usable credential, leaving the rotation cursor where it is; None if all are cooling."""
        with self._lock:
            now = self._clock()
            return next((c for c in self._credentials if not c.is_cooling(now)), None)

    def fewest_failures_available(self) -> Optional[int]:
        """Lowest consecutive failure count among usable credentials; None if all are cooling."""
        with self._lock:
            now = self._clock()
            counts = [c.consecutive_failures for c in self._credentials if not c.is_cooling(now)]
            return min(counts) if counts else None

    def reset_cooldowns(self) -> None:
        with self._lock:
            for credential in self._credentials:
                credential.cooldown_until = None
                credential.consecutive_failures = 0
        logger.info("Credential cooldowns cleared (%d credentials)", len(self._credentials))

    def snapshot(self) -> List[dict]:
        """Cooling credentials with remaining seconds, for status endpoints."""
        with self._lock:
            now = self._clock()
            return [
                {
                    "name": c.id,
                    "remaining_seconds": round(c.cooldown_until - now, 3),
                    "consecutive_failures": c.consecutive_failures,
                }
                for c in self._credentials
                if c.is_cooling(now)
            ]
