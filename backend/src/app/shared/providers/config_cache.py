"""Short-TTL cache of the feature → model mapping.

The snapshot is refreshed from the settings source once it is older than
the TTL.  A failed refresh keeps whatever snapshot exists (possibly empty)
and is retried on the next lookup.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable

import structlog

from app.ports.outbound import SettingsSource

logger = structlog.get_logger(__name__)

DEFAULT_TTL_SECONDS = 300.0


class ConfigCache:
    """Feature key → model id lookups backed by a ``SettingsSource``."""

    def __init__(
        self,
        source: SettingsSource,
        *,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._source = source
        self._ttl = ttl_seconds
        self._clock = clock
        self._snapshot: dict[str, str] | None = None
        self._fetched_at: float | None = None
        self._refresh_lock = asyncio.Lock()

    async def get(self, feature_key: str, fallback_default: str) -> str:
        """Model configured for ``feature_key``, else ``fallback_default``."""
        snapshot = await self._current()
        return snapshot.get(feature_key) or fallback_default

    async def snapshot(self) -> dict[str, str]:
        return dict(await self._current())

    def invalidate(self) -> None:
        """Drop the snapshot so the next lookup always refreshes."""
        self._snapshot = None
        self._fetched_at = None
        logger.info("config_cache_invalidated")

    # ── Internals ────────────────────────────────────────────
    def _is_stale(self) -> bool:
        if self._snapshot is None or self._fetched_at is None:
            return True
        return self._clock() - self._fetched_at > self._ttl

    async def _current(self) -> dict[str, str]:
        if self._is_stale():
            async with self._refresh_lock:
                # Another caller may have refreshed while we waited
                if self._is_stale():
                    await self._refresh()
        return self._snapshot or {}

    async def _refresh(self) -> None:
        try:
            values = await self._source.get_all()
        except Exception as exc:
            logger.error(
                "config_refresh_failed",
                error=str(exc),
                keeping_stale=self._snapshot is not None,
            )
            if self._snapshot is None:
                self._snapshot = {}
            return

        self._snapshot = dict(values)
        self._fetched_at = self._clock()
        logger.debug("config_refreshed", keys=len(self._snapshot))
