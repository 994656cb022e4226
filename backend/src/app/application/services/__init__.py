"""AI gateway service — the single inbound entry-point for generation calls.

Resolves the model for a feature through the config cache, loads the active
credentials fresh from the credential source, lets the router order them and
the dispatcher fail over across them, then hands the terminal outcome to
usage telemetry.  Also hosts the administrative operations (credential
connectivity tests, feature-model settings, runtime stats).
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, replace
from typing import Any

import structlog

from app.domain.catalog import AVAILABLE_MODELS, DEFAULT_MODELS, FALLBACK_MODEL, setting_key_for
from app.domain.entities import (
    Attachment,
    Credential,
    CredentialTestResult,
    DispatchResult,
    GenerationRequest,
    TextPart,
    UsageRecord,
    month_key,
)
from app.domain.enums import FeatureKey, ProviderKind
from app.domain.exceptions import (
    AllCredentialsFailedError,
    LLMError,
    RateLimitedError,
    ValidationError,
)
from app.ports.outbound import CredentialSource, SettingsSource, UsageStore
from app.shared.observability.metrics import LLM_DISPATCH_LATENCY
from app.shared.providers import (
    ConfigCache,
    CredentialHealth,
    FailoverDispatcher,
    UsageTelemetry,
)

logger = structlog.get_logger(__name__)

TEST_PROMPT = "Hello"


@dataclass
class CredentialTestSummary:
    """Outcome of testing every stored credential."""

    total: int = 0
    success: int = 0
    failed: int = 0
    details: list[dict[str, Any]] = field(default_factory=list)


class AIGatewayService:
    """Feature-aware front door over the failover dispatcher."""

    def __init__(
        self,
        dispatcher: FailoverDispatcher,
        credentials: CredentialSource,
        config: ConfigCache,
        settings_source: SettingsSource,
        telemetry: UsageTelemetry,
        *,
        usage_store: UsageStore | None = None,
        default_model: str = FALLBACK_MODEL,
        test_timeout_s: float = 10.0,
        test_delay_s: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._dispatcher = dispatcher
        self._credentials = credentials
        self._config = config
        self._settings_source = settings_source
        self._telemetry = telemetry
        self._usage_store = usage_store
        self._default_model = default_model
        self._test_timeout = test_timeout_s
        self._test_delay = test_delay_s
        self._sleep = sleep

    @property
    def dispatcher(self) -> FailoverDispatcher:
        return self._dispatcher

    @property
    def telemetry(self) -> UsageTelemetry:
        return self._telemetry

    # ── Generation ───────────────────────────────────────────
    async def resolve_model(self, feature: str) -> str:
        """Model configured for ``feature``, falling back to the catalog default."""
        setting_key = setting_key_for(feature)
        default = DEFAULT_MODELS.get(setting_key, self._default_model)
        return await self._config.get(setting_key, default)

    async def send_request(
        self,
        prompt: str,
        context: str = "",
        feature: str = FeatureKey.GENERAL.value,
        attachment: Attachment | None = None,
        user_id: str | None = None,
        model: str | None = None,
    ) -> str:
        """Resolved response text for one generation request.

        Raises:
            NoCredentialsError: No credential is active.
            AllCredentialsFailedError: Every active credential failed.
        """
        result = await self.dispatch(
            GenerationRequest(
                prompt=prompt,
                context=context,
                feature=feature,
                attachment=attachment,
                user_id=user_id,
                model=model,
            )
        )
        return result.text

    async def dispatch(self, request: GenerationRequest) -> DispatchResult:
        """Like ``send_request`` but returns the winning attempt's details."""
        if not request.prompt and request.attachment is None:
            raise ValidationError("A prompt or an attachment is required")

        if request.model is None:
            request = replace(request, model=await self.resolve_model(request.feature))

        credentials = await self._credentials.list_active()
        ordered = self._dispatcher.router.select_order(credentials)

        start = time.monotonic()
        try:
            result = await self._dispatcher.dispatch(request, ordered)
        except AllCredentialsFailedError:
            self._telemetry.record(request.user_id, request.feature, False)
            raise
        finally:
            LLM_DISPATCH_LATENCY.labels(feature=request.feature).observe(
                time.monotonic() - start
            )

        self._telemetry.record(request.user_id, request.feature, True)
        return result

    # ── Credential administration ────────────────────────────
    async def test_credential(
        self,
        key: str,
        model: str = "gemini-2.5-flash",
        provider: ProviderKind = ProviderKind.GEMINI,
    ) -> CredentialTestResult:
        """Connectivity test with a tiny prompt; a 429 deactivates the key."""
        adapter = self._dispatcher.adapter_for(provider)
        if adapter is None:
            return CredentialTestResult(False, f"Unsupported provider: {provider.value}")

        credential = Credential(key=key, provider=provider, model=model, name="connectivity-test")
        log = logger.bind(key=credential.masked_key, provider=provider.value, model=model)
        try:
            text = await asyncio.wait_for(
                adapter.send([TextPart(TEST_PROMPT)], model, credential, timeout=self._test_timeout),
                timeout=self._test_timeout,
            )
        except RateLimitedError:
            log.warning("credential_test_rate_limited")
            try:
                await self._credentials.deactivate(key)
            except Exception as exc:
                log.error("credential_auto_deactivate_failed", error=str(exc))
                return CredentialTestResult(False, "Rate limit exceeded")
            return CredentialTestResult(
                False,
                "Rate limit exceeded. Key has been auto-deactivated.",
                key_deactivated=True,
            )
        except asyncio.TimeoutError:
            log.warning("credential_test_timeout", timeout_s=self._test_timeout)
            return CredentialTestResult(False, f"Timeout after {self._test_timeout}s")
        except LLMError as exc:
            log.warning("credential_test_failed", error=str(exc))
            return CredentialTestResult(False, exc.message)

        if not text or not text.strip():
            return CredentialTestResult(False, "API responded but returned no content.")
        log.info("credential_test_passed")
        return CredentialTestResult(True, "Valid API key (content received)")

    async def test_all_credentials(self) -> CredentialTestSummary:
        """Test every stored credential in turn, activating passes and
        deactivating failures."""
        credentials = await self._credentials.list_all()
        summary = CredentialTestSummary(total=len(credentials))

        for index, cred in enumerate(credentials):
            if index and self._test_delay > 0:
                await self._sleep(self._test_delay)

            result = await self.test_credential(cred.key, cred.model, cred.provider)
            if not result.key_deactivated:
                await self._credentials.set_active(cred.key, result.success)

            if result.success:
                summary.success += 1
            else:
                summary.failed += 1
            summary.details.append(
                {
                    "name": cred.name,
                    "key": cred.masked_key,
                    "success": result.success,
                    "message": result.message,
                }
            )

        logger.info(
            "credential_batch_test_completed",
            total=summary.total,
            success=summary.success,
            failed=summary.failed,
        )
        return summary

    async def get_credential_stats(self) -> list[CredentialHealth]:
        credentials = await self._credentials.list_all()
        return self._dispatcher.pool.snapshot(credentials)

    # ── Feature → model settings ─────────────────────────────
    async def get_config(self) -> dict[str, Any]:
        """Defaults merged with stored settings, plus the selectable models."""
        stored = await self._settings_source.get_all()
        return {
            "config": {**DEFAULT_MODELS, **stored},
            "models": list(AVAILABLE_MODELS),
        }

    async def update_setting(self, key: str, value: str) -> None:
        if not key or not value:
            raise ValidationError("Key and value are required")
        await self._settings_source.set(key, value)
        self._config.invalidate()
        logger.info("setting_updated", key=key, value=value)

    # ── Usage ────────────────────────────────────────────────
    async def get_user_stats(self) -> list[UsageRecord]:
        """Current-month usage per user.  Best effort: a store failure yields []."""
        if self._usage_store is None:
            return []
        try:
            return await self._usage_store.list_month(month_key())
        except Exception as exc:
            logger.error("user_stats_fetch_failed", error=str(exc))
            return []
