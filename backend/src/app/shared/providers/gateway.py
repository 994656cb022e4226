"""Failover dispatcher — the main entry-point for provider calls.

Walks an ordered list of credentials, invokes the provider adapter that
matches each credential, classifies the outcome, and updates the pool.
The first non-empty response wins; no further credentials are tried.

Attempts within one dispatch are strictly sequential.  Failures are
credential-scoped: one exhausted or broken credential never fails the
call while another credential can still serve it.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Mapping, Sequence

import structlog

from app.domain.entities import Credential, DispatchResult, GenerationRequest
from app.domain.enums import AttemptOutcome, ProviderKind
from app.domain.exceptions import (
    AllCredentialsFailedError,
    EmptyResponseError,
    LLMError,
    RateLimitedError,
    TransientProviderError,
    UnsupportedAttachmentError,
)
from app.ports.outbound import ProviderAdapter
from app.shared.observability.metrics import LLM_ATTEMPTS_TOTAL
from app.shared.providers.key_manager import CredentialPool
from app.shared.providers.router import CredentialRouter
from app.shared.providers.types import DispatcherState

logger = structlog.get_logger(__name__)


class FailoverDispatcher:
    """Sequential credential failover over a closed set of provider adapters.

    Usage::

        dispatcher = FailoverDispatcher(adapters={ProviderKind.GEMINI: gemini})
        ordered = dispatcher.router.select_order(active_credentials)
        result = await dispatcher.dispatch(request, ordered)

    All mutable state (counters, cooldowns, rotation cursor) lives in the
    ``DispatcherState`` owned by this instance.
    """

    def __init__(
        self,
        adapters: Mapping[ProviderKind, ProviderAdapter],
        *,
        state: DispatcherState | None = None,
        pool: CredentialPool | None = None,
        request_timeout_s: float = 30.0,
        attachment_timeout_s: float = 60.0,
    ) -> None:
        self._adapters = dict(adapters)
        self._pool = pool or CredentialPool(state)
        self._router = CredentialRouter(self._pool)
        self._request_timeout = request_timeout_s
        self._attachment_timeout = attachment_timeout_s

    @property
    def pool(self) -> CredentialPool:
        return self._pool

    @property
    def router(self) -> CredentialRouter:
        return self._router

    @property
    def state(self) -> DispatcherState:
        return self._pool.state

    def adapter_for(self, provider: ProviderKind) -> ProviderAdapter | None:
        return self._adapters.get(provider)

    # ── Main entry-point ─────────────────────────────────────
    async def dispatch(
        self,
        request: GenerationRequest,
        credentials: Sequence[Credential],
    ) -> DispatchResult:
        """Try ``credentials`` in order until one returns text.

        Returns:
            The winning attempt.

        Raises:
            AllCredentialsFailedError: If every credential failed; carries the
                last underlying error.
        """
        errors: list[tuple[str, str, str]] = []
        last_error: BaseException | None = None
        timeout = self._attachment_timeout if request.has_attachment else self._request_timeout

        for attempt, credential in enumerate(credentials, start=1):
            model = request.model or credential.model
            log = logger.bind(
                credential=credential.name,
                provider=credential.provider.value,
                model=model,
                attempt=attempt,
            )

            start = time.monotonic()
            try:
                text = await self._attempt(request, credential, model, timeout)
            except RateLimitedError as exc:
                last_error = exc
                errors.append((credential.name, credential.masked_key, str(exc)))
                self._pool.record_failure(
                    credential, rate_limited=True, retry_after=exc.retry_after
                )
                self._count(credential, AttemptOutcome.RATE_LIMITED)
                log.warning("credential_rate_limited", retry_after=exc.retry_after)
                continue
            except LLMError as exc:
                last_error = exc
                errors.append((credential.name, credential.masked_key, str(exc)))
                self._pool.record_failure(credential)
                self._count(credential, AttemptOutcome.FAILED)
                log.warning("credential_request_failed", error=str(exc), code=exc.code)
                continue

            latency_ms = (time.monotonic() - start) * 1000
            self._pool.record_success(credential)
            self._count(credential, AttemptOutcome.SUCCESS)
            log.info("credential_request_success", latency_ms=round(latency_ms, 1))
            if attempt > 1:
                logger.info(
                    "credential_failover_success",
                    credential=credential.name,
                    attempts=attempt,
                    failed_credentials=[name for name, _, _ in errors],
                )
            return DispatchResult(
                text=text,
                credential=credential,
                attempts=attempt,
                latency_ms=latency_ms,
            )

        logger.error(
            "all_credentials_failed",
            attempted=len(credentials),
            last_error=str(last_error) if last_error else None,
        )
        raise AllCredentialsFailedError(errors, last_error)

    # ── Single attempt ───────────────────────────────────────
    async def _attempt(
        self,
        request: GenerationRequest,
        credential: Credential,
        model: str,
        timeout: float,
    ) -> str:
        """One call with one credential; every failure surfaces as ``LLMError``."""
        provider = credential.provider.value
        adapter = self._adapters.get(credential.provider)
        if adapter is None:
            raise TransientProviderError(provider, "No adapter registered for provider")
        if request.has_attachment and not adapter.supports_attachments:
            # Local and non-retryable for this credential; the loop moves on
            raise UnsupportedAttachmentError(provider)

        try:
            text = await asyncio.wait_for(
                adapter.send(request.parts(), model, credential, timeout=timeout),
                timeout=timeout,
            )
        except asyncio.TimeoutError as exc:
            raise TransientProviderError(provider, f"Timeout after {timeout}s") from exc
        except LLMError:
            raise
        except Exception as exc:
            raise TransientProviderError(provider, f"{type(exc).__name__}: {exc}") from exc

        if not text or not text.strip():
            raise EmptyResponseError(provider)
        return text

    def _count(self, credential: Credential, outcome: AttemptOutcome) -> None:
        LLM_ATTEMPTS_TOTAL.labels(
            provider=credential.provider.value, outcome=outcome.value
        ).inc()
