"""Credential router — orders candidate credentials for one call.

Filters out credentials that are cooling down, falls back to the full set
when every credential is cooling down, then rotates the starting offset so
that load spreads evenly across the pool.
"""

from __future__ import annotations

import threading
from collections.abc import Sequence

import structlog

from app.domain.entities import Credential
from app.domain.exceptions import NoCredentialsError
from app.shared.providers.key_manager import CredentialPool

logger = structlog.get_logger(__name__)


class CredentialRouter:
    """Round-robin ordering over the pool's non-cooling credentials."""

    def __init__(self, pool: CredentialPool) -> None:
        self._pool = pool
        self._lock = threading.Lock()

    @property
    def cursor(self) -> int:
        return self._pool.state.cursor

    def select_order(self, credentials: Sequence[Credential]) -> list[Credential]:
        """Return every candidate, rotated so the starting point advances per call.

        Never awaits, so reading and advancing the cursor is atomic with
        respect to other in-flight calls on the event loop.

        Raises:
            NoCredentialsError: If ``credentials`` is empty.
        """
        if not credentials:
            logger.error("no_credentials_configured")
            raise NoCredentialsError()

        candidates = self._filter_candidates(credentials)

        if not candidates:
            # Every credential is cooling down: try them all anyway
            logger.warning(
                "all_credentials_cooling_down",
                total_configured=len(credentials),
            )
            candidates = list(credentials)

        with self._lock:
            state = self._pool.state
            offset = state.cursor % len(candidates)
            state.cursor += 1

        ordered = candidates[offset:] + candidates[:offset]
        logger.debug(
            "credential_order_selected",
            candidates=len(ordered),
            offset=offset,
            first=ordered[0].name,
        )
        return ordered

    # ── Filtering ────────────────────────────────────────────
    def _filter_candidates(self, credentials: Sequence[Credential]) -> list[Credential]:
        candidates: list[Credential] = []
        for cred in credentials:
            if self._pool.is_cooling_down(cred):
                logger.debug("credential_cooling_down", credential=cred.name)
                continue
            candidates.append(cred)
        return candidates
