"""Tests for the credential failover system.

Covers CredentialPool, CredentialRouter, FailoverDispatcher, with_retry,
ConfigCache and UsageTelemetry.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import pytest

from app.domain.entities import Attachment, Credential, GenerationRequest
from app.domain.enums import ProviderKind
from app.domain.exceptions import (
    AllCredentialsFailedError,
    NoCredentialsError,
    ParseError,
    RateLimitedError,
    TransientProviderError,
)
from app.shared.providers import (
    ConfigCache,
    CredentialPool,
    CredentialRouter,
    DispatcherState,
    FailoverDispatcher,
    UsageTelemetry,
    with_retry,
)


def _request(**kwargs) -> GenerationRequest:
    return GenerationRequest(prompt=kwargs.pop("prompt", "Hello"), **kwargs)


# ═══════════════════════════════════════════════════════════════
#  CredentialPool
# ═══════════════════════════════════════════════════════════════
class TestCredentialPool:
    def test_starts_with_zero_counters(self, credentials) -> None:
        pool = CredentialPool()
        stats = pool.stats_for(credentials[0])
        assert stats.use_count == 0
        assert stats.failure_count == 0
        assert not pool.is_cooling_down(credentials[0])

    def test_records_success_and_failure(self, credentials) -> None:
        pool = CredentialPool(wall_clock=lambda: 42.0)
        pool.record_success(credentials[0])
        pool.record_success(credentials[0])
        pool.record_failure(credentials[0])
        stats = pool.stats_for(credentials[0])
        assert stats.use_count == 2
        assert stats.failure_count == 1
        assert stats.last_used_at == 42.0

    def test_plain_failure_does_not_cool_down(self, credentials) -> None:
        pool = CredentialPool()
        pool.record_failure(credentials[0])
        assert not pool.is_cooling_down(credentials[0])

    def test_rate_limit_cools_down_for_sixty_seconds(self, credentials, clock) -> None:
        pool = CredentialPool(clock=clock)
        pool.record_failure(credentials[0], rate_limited=True)

        assert pool.is_cooling_down(credentials[0])
        assert pool.cooldown_remaining(credentials[0]) == pytest.approx(60.0)

        clock.advance(59)
        assert pool.is_cooling_down(credentials[0])

        clock.advance(1)
        assert not pool.is_cooling_down(credentials[0])

    def test_retry_after_ignored_by_default(self, credentials, clock) -> None:
        pool = CredentialPool(clock=clock)
        pool.record_failure(credentials[0], rate_limited=True, retry_after=5)
        assert pool.cooldown_remaining(credentials[0]) == pytest.approx(60.0)

    def test_retry_after_honored_when_enabled(self, credentials, clock) -> None:
        pool = CredentialPool(clock=clock, honor_retry_after=True)
        pool.record_failure(credentials[0], rate_limited=True, retry_after=5)
        assert pool.cooldown_remaining(credentials[0]) == pytest.approx(5.0)

        clock.advance(5)
        assert not pool.is_cooling_down(credentials[0])

    def test_snapshot_masks_keys(self, credentials, clock) -> None:
        pool = CredentialPool(clock=clock)
        pool.record_failure(credentials[1], rate_limited=True)

        health = pool.snapshot(credentials)
        assert [h.masked_key for h in health] == ["...1111", "...2222", "...3333"]
        assert [h.cooling_down for h in health] == [False, True, False]
        assert health[1].failure_count == 1
        assert health[0].last_used_at is None

    def test_reset_clears_counters_and_cooldowns(self, credentials, clock) -> None:
        pool = CredentialPool(clock=clock)
        pool.record_failure(credentials[0], rate_limited=True)
        pool.reset()
        assert not pool.is_cooling_down(credentials[0])
        assert pool.stats_for(credentials[0]).failure_count == 0

    def test_reset_single_credential(self, credentials, clock) -> None:
        pool = CredentialPool(clock=clock)
        pool.record_failure(credentials[0], rate_limited=True)
        pool.record_failure(credentials[1], rate_limited=True)
        pool.reset(credentials[0])
        assert not pool.is_cooling_down(credentials[0])
        assert pool.is_cooling_down(credentials[1])


# ═══════════════════════════════════════════════════════════════
#  CredentialRouter
# ═══════════════════════════════════════════════════════════════
class TestCredentialRouter:
    def test_rotates_starting_offset_per_call(self, credentials) -> None:
        router = CredentialRouter(CredentialPool())
        firsts = [router.select_order(credentials)[0].name for _ in range(4)]
        assert firsts == ["Key A", "Key B", "Key C", "Key A"]

    def test_returns_every_candidate(self, credentials) -> None:
        router = CredentialRouter(CredentialPool())
        router.select_order(credentials)
        ordered = router.select_order(credentials)
        assert [c.name for c in ordered] == ["Key B", "Key C", "Key A"]

    def test_empty_list_raises(self) -> None:
        router = CredentialRouter(CredentialPool())
        with pytest.raises(NoCredentialsError):
            router.select_order([])

    def test_skips_cooling_credentials(self, credentials, clock) -> None:
        pool = CredentialPool(clock=clock)
        pool.record_failure(credentials[1], rate_limited=True)
        router = CredentialRouter(pool)

        ordered = router.select_order(credentials)
        assert [c.name for c in ordered] == ["Key A", "Key C"]

    def test_cooled_credential_returns_after_window(self, credentials, clock) -> None:
        pool = CredentialPool(clock=clock)
        pool.record_failure(credentials[0], rate_limited=True)
        router = CredentialRouter(pool)

        assert credentials[0] not in router.select_order(credentials)
        clock.advance(60)
        assert credentials[0] in router.select_order(credentials)

    def test_all_cooling_falls_back_to_full_set(self, credentials, clock) -> None:
        pool = CredentialPool(clock=clock)
        for cred in credentials:
            pool.record_failure(cred, rate_limited=True)
        router = CredentialRouter(pool)

        ordered = router.select_order(credentials)
        assert sorted(c.name for c in ordered) == ["Key A", "Key B", "Key C"]

    def test_cursor_is_per_state(self, credentials) -> None:
        first = CredentialRouter(CredentialPool(DispatcherState()))
        second = CredentialRouter(CredentialPool(DispatcherState()))
        first.select_order(credentials)
        first.select_order(credentials)
        assert second.select_order(credentials)[0].name == "Key A"
        assert first.cursor == 2


# ═══════════════════════════════════════════════════════════════
#  FailoverDispatcher
# ═══════════════════════════════════════════════════════════════
class TestFailoverDispatcher:
    @pytest.mark.asyncio
    async def test_first_success_makes_one_call(self, credentials, scripted_adapter) -> None:
        adapter = scripted_adapter(default="Hi there")
        dispatcher = FailoverDispatcher({ProviderKind.GEMINI: adapter})

        result = await dispatcher.dispatch(_request(), credentials)

        assert result.text == "Hi there"
        assert result.attempts == 1
        assert result.credential == credentials[0]
        assert adapter.keys_called == ["key-aaaa1111"]
        assert dispatcher.pool.stats_for(credentials[0]).use_count == 1

    @pytest.mark.asyncio
    async def test_fails_over_past_rate_limited_credentials(
        self, credentials, scripted_adapter, clock
    ) -> None:
        adapter = scripted_adapter(
            {
                "key-aaaa1111": [RateLimitedError("gemini")],
                "key-bbbb2222": [RateLimitedError("gemini")],
                "key-cccc3333": ["third time lucky"],
            }
        )
        pool = CredentialPool(clock=clock)
        dispatcher = FailoverDispatcher({ProviderKind.GEMINI: adapter}, pool=pool)

        result = await dispatcher.dispatch(_request(), credentials)

        assert result.text == "third time lucky"
        assert result.attempts == 3
        assert result.credential.name == "Key C"
        assert len(adapter.calls) == 3
        assert [pool.is_cooling_down(c) for c in credentials] == [True, True, False]
        assert pool.stats_for(credentials[2]).use_count == 1

    @pytest.mark.asyncio
    async def test_all_failing_raises_with_last_error(
        self, credentials, scripted_adapter
    ) -> None:
        last = TransientProviderError("gemini", "HTTP 500", status_code=500)
        adapter = scripted_adapter(
            {
                "key-aaaa1111": [TransientProviderError("gemini", "HTTP 403", status_code=403)],
                "key-bbbb2222": [RateLimitedError("gemini")],
                "key-cccc3333": [last],
            }
        )
        dispatcher = FailoverDispatcher({ProviderKind.GEMINI: adapter})

        with pytest.raises(AllCredentialsFailedError) as exc_info:
            await dispatcher.dispatch(_request(), credentials)

        assert exc_info.value.last_error is last
        assert [name for name, _, _ in exc_info.value.errors] == ["Key A", "Key B", "Key C"]
        assert [dispatcher.pool.stats_for(c).failure_count for c in credentials] == [1, 1, 1]
        assert "HTTP 500" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_same_named_credentials_each_reported(self, scripted_adapter) -> None:
        credentials = [Credential(key=f"gm-shared-000{i}") for i in range(3)]
        adapter = scripted_adapter(
            default=TransientProviderError("gemini", "HTTP 500", status_code=500)
        )
        dispatcher = FailoverDispatcher({ProviderKind.GEMINI: adapter})

        with pytest.raises(AllCredentialsFailedError) as exc_info:
            await dispatcher.dispatch(_request(), credentials)

        errors = exc_info.value.errors
        assert len(adapter.calls) == 3
        assert len(errors) == 3
        assert [masked for _, masked, _ in errors] == ["...0000", "...0001", "...0002"]

    @pytest.mark.asyncio
    async def test_only_rate_limits_start_cooldowns(
        self, credentials, scripted_adapter
    ) -> None:
        adapter = scripted_adapter(
            {"key-aaaa1111": [TransientProviderError("gemini", "boom")]},
            default=RateLimitedError("gemini"),
        )
        dispatcher = FailoverDispatcher({ProviderKind.GEMINI: adapter})

        with pytest.raises(AllCredentialsFailedError):
            await dispatcher.dispatch(_request(), credentials)

        pool = dispatcher.pool
        assert [pool.is_cooling_down(c) for c in credentials] == [False, True, True]

    @pytest.mark.asyncio
    async def test_blank_response_is_a_failure(self, credentials, scripted_adapter) -> None:
        adapter = scripted_adapter({"key-aaaa1111": ["   "]}, default="real answer")
        dispatcher = FailoverDispatcher({ProviderKind.GEMINI: adapter})

        result = await dispatcher.dispatch(_request(), credentials)

        assert result.text == "real answer"
        assert result.attempts == 2
        assert dispatcher.pool.stats_for(credentials[0]).failure_count == 1
        assert not dispatcher.pool.is_cooling_down(credentials[0])

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_wrapped(self, credentials, scripted_adapter) -> None:
        adapter = scripted_adapter({"key-aaaa1111": [RuntimeError("socket closed")]})
        dispatcher = FailoverDispatcher({ProviderKind.GEMINI: adapter})

        result = await dispatcher.dispatch(_request(), credentials)

        assert result.credential.name == "Key B"
        assert dispatcher.pool.stats_for(credentials[0]).failure_count == 1

    @pytest.mark.asyncio
    async def test_attachment_skips_text_only_provider(self, scripted_adapter) -> None:
        gemini = scripted_adapter(default="heard you")
        openai = scripted_adapter(kind=ProviderKind.OPENAI, supports_attachments=False)
        dispatcher = FailoverDispatcher(
            {ProviderKind.GEMINI: gemini, ProviderKind.OPENAI: openai}
        )
        creds = [
            Credential(key="sk-openai-0001", provider=ProviderKind.OPENAI, model="gpt-4o", name="OpenAI"),
            Credential(key="gm-gemini-0002", name="Gemini"),
        ]

        result = await dispatcher.dispatch(
            _request(prompt="", attachment=Attachment(data="AAAA")), creds
        )

        assert result.credential.name == "Gemini"
        assert openai.calls == []
        assert dispatcher.pool.stats_for(creds[0]).failure_count == 1
        assert not dispatcher.pool.is_cooling_down(creds[0])

    @pytest.mark.asyncio
    async def test_missing_adapter_is_a_failure(self, credentials, scripted_adapter) -> None:
        dispatcher = FailoverDispatcher({ProviderKind.GEMINI: scripted_adapter()})
        creds = [
            Credential(key="sk-openai-0001", provider=ProviderKind.OPENAI, name="OpenAI"),
            credentials[0],
        ]
        result = await dispatcher.dispatch(_request(), creds)
        assert result.credential == credentials[0]

    @pytest.mark.asyncio
    async def test_attempt_timeout(self, credentials, scripted_adapter) -> None:
        class SlowAdapter(scripted_adapter):  # type: ignore[misc, valid-type]
            async def send(self, parts, model, credential, *, timeout=None):
                if credential.key == "key-aaaa1111":
                    await asyncio.sleep(1)
                return await super().send(parts, model, credential, timeout=timeout)

        dispatcher = FailoverDispatcher(
            {ProviderKind.GEMINI: SlowAdapter(default="fast")},
            request_timeout_s=0.01,
        )

        result = await dispatcher.dispatch(_request(), credentials)

        assert result.credential.name == "Key B"
        assert dispatcher.pool.stats_for(credentials[0]).failure_count == 1

    @pytest.mark.asyncio
    async def test_model_override(self, credentials, scripted_adapter) -> None:
        adapter = scripted_adapter()
        dispatcher = FailoverDispatcher({ProviderKind.GEMINI: adapter})

        await dispatcher.dispatch(_request(), credentials)
        await dispatcher.dispatch(_request(model="gemini-2.5-pro"), credentials)

        assert [model for _, model, _ in adapter.calls] == ["gemini-2.5-flash", "gemini-2.5-pro"]

    @pytest.mark.asyncio
    async def test_parts_order_context_message_attachment(
        self, credentials, scripted_adapter
    ) -> None:
        adapter = scripted_adapter()
        dispatcher = FailoverDispatcher({ProviderKind.GEMINI: adapter})

        await dispatcher.dispatch(
            _request(prompt="msg", context="ctx", attachment=Attachment(data="QUJD")),
            credentials,
        )

        parts = adapter.calls[0][2]
        assert parts[0].text == "ctx" and parts[0].is_context
        assert parts[1].text == "msg" and not parts[1].is_context
        assert parts[2].data == "QUJD"


# ═══════════════════════════════════════════════════════════════
#  with_retry
# ═══════════════════════════════════════════════════════════════
class TestWithRetry:
    @pytest.mark.asyncio
    async def test_parse_error_then_success(self) -> None:
        calls = 0

        async def operation() -> str:
            nonlocal calls
            calls += 1
            if calls == 1:
                raise ParseError("Parsed 0 exercises")
            return "parsed"

        assert await with_retry(operation, 2, operation_name="exercises") == "parsed"
        assert calls == 2

    @pytest.mark.asyncio
    async def test_raises_last_error_after_exhaustion(self) -> None:
        errors = [ParseError("first"), ParseError("second")]

        async def operation() -> str:
            raise errors.pop(0)

        with pytest.raises(ParseError, match="second"):
            await with_retry(operation, 2)
        assert errors == []

    @pytest.mark.asyncio
    async def test_first_success_is_not_repeated(self) -> None:
        calls = 0

        async def operation() -> int:
            nonlocal calls
            calls += 1
            return calls

        assert await with_retry(operation, 3) == 1

    @pytest.mark.asyncio
    async def test_configuration_error_is_not_retried(self) -> None:
        calls = 0

        async def operation() -> str:
            nonlocal calls
            calls += 1
            raise NoCredentialsError()

        with pytest.raises(NoCredentialsError):
            await with_retry(operation, 3)
        assert calls == 1

    @pytest.mark.asyncio
    async def test_rejects_zero_attempts(self) -> None:
        async def operation() -> None:
            return None

        with pytest.raises(ValueError):
            await with_retry(operation, 0)


# ═══════════════════════════════════════════════════════════════
#  ConfigCache
# ═══════════════════════════════════════════════════════════════
class TestConfigCache:
    @pytest.mark.asyncio
    async def test_reads_once_within_ttl(self, settings_source, clock) -> None:
        settings_source.values = {"translation_model": "gemini-2.5-pro"}
        cache = ConfigCache(settings_source, ttl_seconds=300, clock=clock)

        assert await cache.get("translation_model", "x") == "gemini-2.5-pro"
        clock.advance(299)
        assert await cache.get("translation_model", "x") == "gemini-2.5-pro"
        assert settings_source.reads == 1

    @pytest.mark.asyncio
    async def test_refreshes_after_ttl(self, settings_source, clock) -> None:
        settings_source.values = {"translation_model": "old"}
        cache = ConfigCache(settings_source, ttl_seconds=300, clock=clock)
        await cache.get("translation_model", "x")

        settings_source.values = {"translation_model": "new"}
        clock.advance(301)
        assert await cache.get("translation_model", "x") == "new"
        assert settings_source.reads == 2

    @pytest.mark.asyncio
    async def test_missing_key_uses_fallback(self, settings_source, clock) -> None:
        cache = ConfigCache(settings_source, clock=clock)
        assert await cache.get("grammar_model", "gemini-2.5-flash-lite") == "gemini-2.5-flash-lite"

    @pytest.mark.asyncio
    async def test_concurrent_lookups_share_one_refresh(self, settings_source, clock) -> None:
        settings_source.values = {"k": "v"}
        cache = ConfigCache(settings_source, clock=clock)

        results = await asyncio.gather(*(cache.get("k", "x") for _ in range(10)))

        assert results == ["v"] * 10
        assert settings_source.reads == 1

    @pytest.mark.asyncio
    async def test_failed_refresh_keeps_stale_snapshot(self, settings_source, clock) -> None:
        settings_source.values = {"k": "stale"}
        cache = ConfigCache(settings_source, ttl_seconds=10, clock=clock)
        await cache.get("k", "x")

        settings_source.fail = True
        clock.advance(11)
        assert await cache.get("k", "x") == "stale"

    @pytest.mark.asyncio
    async def test_failed_first_load_uses_fallback(self, settings_source, clock) -> None:
        settings_source.fail = True
        cache = ConfigCache(settings_source, clock=clock)
        assert await cache.get("k", "fallback") == "fallback"

        settings_source.fail = False
        settings_source.values = {"k": "loaded"}
        assert await cache.get("k", "fallback") == "loaded"

    @pytest.mark.asyncio
    async def test_invalidate_forces_refresh(self, settings_source, clock) -> None:
        settings_source.values = {"k": "v1"}
        cache = ConfigCache(settings_source, clock=clock)
        await cache.get("k", "x")

        settings_source.values = {"k": "v2"}
        cache.invalidate()
        assert await cache.snapshot() == {"k": "v2"}


# ═══════════════════════════════════════════════════════════════
#  UsageTelemetry
# ═══════════════════════════════════════════════════════════════
MARCH_15 = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc).timestamp()


class TestUsageTelemetry:
    @pytest.mark.asyncio
    async def test_record_schedules_usage_write(self, usage_store) -> None:
        telemetry = UsageTelemetry(usage_store, wall_clock=lambda: MARCH_15)

        telemetry.record("user-1", "translation", True)
        telemetry.record("user-1", "hints", False)
        await telemetry.drain()

        assert usage_store.increments == [
            ("user-1", "2026-03", "translation", True),
            ("user-1", "2026-03", "hints", False),
        ]
        stats = telemetry.user_stats()["user-1"]
        assert (stats.requests, stats.successes, stats.failures) == (2, 1, 1)
        assert stats.last_active == MARCH_15

    @pytest.mark.asyncio
    async def test_failed_write_is_swallowed(self, usage_store) -> None:
        usage_store.fail = True
        telemetry = UsageTelemetry(usage_store)

        telemetry.record("user-1", "translation", True)
        await telemetry.drain()

        assert telemetry.pending_writes == 0
        assert telemetry.user_stats()["user-1"].successes == 1

    @pytest.mark.asyncio
    async def test_anonymous_calls_are_not_persisted(self, usage_store) -> None:
        telemetry = UsageTelemetry(usage_store)
        telemetry.record(None, "general", True)
        await telemetry.drain()
        assert usage_store.increments == []
        assert telemetry.user_stats() == {}

    def test_record_outside_event_loop(self, usage_store) -> None:
        telemetry = UsageTelemetry(usage_store)
        telemetry.record("user-1", "general", True)
        assert telemetry.user_stats()["user-1"].requests == 1
        assert telemetry.pending_writes == 0

    def test_user_stats_returns_copies(self) -> None:
        telemetry = UsageTelemetry()
        telemetry.record("user-1", "general", True)
        telemetry.user_stats()["user-1"].requests = 99
        assert telemetry.user_stats()["user-1"].requests == 1

    @pytest.mark.asyncio
    async def test_without_store_only_counts_in_memory(self) -> None:
        telemetry = UsageTelemetry()
        telemetry.record("user-1", "general", False)
        await telemetry.drain()
        assert telemetry.pending_writes == 0
        assert telemetry.user_stats()["user-1"].failures == 1
