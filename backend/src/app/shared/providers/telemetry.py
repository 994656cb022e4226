"""Usage telemetry — in-memory counters plus best-effort persistence.

``record`` updates per-user counters synchronously, then schedules the
per-(user, month) increment as a background task with its own error
boundary.  A failed or slow write never reaches the caller, whose result is
already resolved by then.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import datetime, timezone

import structlog

from app.domain.entities import month_key
from app.ports.outbound import UsageStore
from app.shared.observability.metrics import LLM_DISPATCH_TOTAL, LLM_USAGE_WRITE_FAILURES

logger = structlog.get_logger(__name__)


@dataclass
class UserStats:
    requests: int = 0
    successes: int = 0
    failures: int = 0
    last_active: float = 0.0


class UsageTelemetry:
    """Per-user counters with fire-and-forget writes to a ``UsageStore``."""

    def __init__(
        self,
        store: UsageStore | None = None,
        *,
        wall_clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._wall_clock = wall_clock
        self._users: dict[str, UserStats] = {}
        self._pending: set[asyncio.Task[None]] = set()

    def record(self, user_id: str | None, feature: str, success: bool) -> None:
        """Account one terminal outcome.  Never raises, never blocks on I/O."""
        LLM_DISPATCH_TOTAL.labels(
            feature=feature, status="success" if success else "failure"
        ).inc()
        if not user_id:
            return

        stats = self._users.setdefault(user_id, UserStats())
        stats.requests += 1
        stats.last_active = self._wall_clock()
        if success:
            stats.successes += 1
        else:
            stats.failures += 1

        store = self._store
        if store is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("usage_write_skipped_no_loop", user_id=user_id)
            return

        month = month_key(datetime.fromtimestamp(self._wall_clock(), tz=timezone.utc))
        task = loop.create_task(self._persist(store, user_id, month, feature, success))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def user_stats(self) -> dict[str, UserStats]:
        return {uid: replace(s) for uid, s in self._users.items()}

    @property
    def pending_writes(self) -> int:
        return len(self._pending)

    async def drain(self) -> None:
        """Wait for scheduled writes (shutdown and tests)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # ── Internals ────────────────────────────────────────────
    async def _persist(
        self, store: UsageStore, user_id: str, month: str, feature: str, success: bool
    ) -> None:
        try:
            await store.increment(user_id, month, feature=feature, success=success)
        except Exception as exc:
            LLM_USAGE_WRITE_FAILURES.inc()
            logger.error(
                "usage_write_failed",
                user_id=user_id,
                month=month,
                feature=feature,
                error=str(exc),
            )
