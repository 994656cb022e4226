"""Credential pool — runtime counters and cooldowns per credential.

The pool never caches the credential list itself; callers hand in a fresh
snapshot on every call.  Only the side tables keyed by credential identity
live here:

- ``CredentialStats``: use/failure counters and last-used time.
- Cooldown table: when a rate-limited credential may be selected again.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Sequence

import structlog

from app.domain.entities import Credential
from app.shared.observability.metrics import LLM_CREDENTIAL_COOLDOWNS
from app.shared.providers.types import CredentialHealth, CredentialStats, DispatcherState

logger = structlog.get_logger(__name__)

DEFAULT_COOLDOWN_SECONDS = 60.0


class CredentialPool:
    """Stats and cooldown bookkeeping over a ``DispatcherState``."""

    def __init__(
        self,
        state: DispatcherState | None = None,
        *,
        cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS,
        honor_retry_after: bool = False,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
    ) -> None:
        self._state = state if state is not None else DispatcherState()
        self._cooldown = cooldown_seconds
        self._honor_retry_after = honor_retry_after
        self._clock = clock
        self._wall_clock = wall_clock
        self._lock = threading.Lock()

    @property
    def state(self) -> DispatcherState:
        return self._state

    @property
    def cooldown_seconds(self) -> float:
        return self._cooldown

    def now(self) -> float:
        return self._clock()

    # ── Cooldowns ────────────────────────────────────────────
    def is_cooling_down(self, credential: Credential) -> bool:
        return self.cooldown_remaining(credential) > 0

    def cooldown_remaining(self, credential: Credential) -> float:
        """Seconds until ``credential`` is selectable again (0 if it already is)."""
        with self._lock:
            until = self._state.cooldowns.get(credential.identity)
            if until is None:
                return 0.0
            remaining = until - self._clock()
            if remaining <= 0:
                # Lazily expire
                del self._state.cooldowns[credential.identity]
                return 0.0
            return remaining

    # ── Recording ────────────────────────────────────────────
    def record_success(self, credential: Credential) -> None:
        with self._lock:
            stats = self._stats(credential)
            stats.use_count += 1
            stats.last_used_at = self._wall_clock()

    def record_failure(
        self,
        credential: Credential,
        *,
        rate_limited: bool = False,
        retry_after: float | None = None,
    ) -> None:
        with self._lock:
            stats = self._stats(credential)
            stats.failure_count += 1
            stats.last_used_at = self._wall_clock()
            if not rate_limited:
                return

            window = self._cooldown
            if self._honor_retry_after and retry_after and retry_after > 0:
                window = retry_after
            self._state.cooldowns[credential.identity] = self._clock() + window

        LLM_CREDENTIAL_COOLDOWNS.labels(provider=credential.provider.value).inc()
        logger.warning(
            "credential_cooldown_started",
            credential=credential.name,
            key=credential.masked_key,
            cooldown_s=window,
        )

    def stats_for(self, credential: Credential) -> CredentialStats:
        with self._lock:
            stats = self._state.stats.get(credential.identity)
            return CredentialStats(
                use_count=stats.use_count if stats else 0,
                failure_count=stats.failure_count if stats else 0,
                last_used_at=stats.last_used_at if stats else 0.0,
            )

    def snapshot(self, credentials: Sequence[Credential]) -> list[CredentialHealth]:
        """Admin view of ``credentials`` with their counters and cooldowns."""
        results: list[CredentialHealth] = []
        for cred in credentials:
            stats = self.stats_for(cred)
            remaining = self.cooldown_remaining(cred)
            results.append(
                CredentialHealth(
                    name=cred.name,
                    masked_key=cred.masked_key,
                    provider=cred.provider,
                    model=cred.model,
                    use_count=stats.use_count,
                    failure_count=stats.failure_count,
                    last_used_at=stats.last_used_at or None,
                    cooling_down=remaining > 0,
                    cooldown_remaining_s=round(remaining, 1),
                )
            )
        return results

    def reset(self, credential: Credential | None = None) -> None:
        """Admin reset — clears cooldown (and counters) for one or all credentials."""
        with self._lock:
            if credential is None:
                self._state.stats.clear()
                self._state.cooldowns.clear()
            else:
                self._state.stats.pop(credential.identity, None)
                self._state.cooldowns.pop(credential.identity, None)
        logger.info(
            "credential_pool_reset",
            credential=credential.name if credential else "all",
        )

    # ── Internals ────────────────────────────────────────────
    def _stats(self, credential: Credential) -> CredentialStats:
        """Caller holds lock."""
        stats = self._state.stats.get(credential.identity)
        if stats is None:
            stats = self._state.stats[credential.identity] = CredentialStats()
        return stats
