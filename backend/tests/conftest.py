"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Sequence

import pytest

from app.domain.entities import Credential, PromptPart, UsageRecord
from app.domain.enums import ProviderKind
from app.ports.outbound import CredentialSource, ProviderAdapter, SettingsSource, UsageStore


# ═══════════════════════════════════════════════════════════════
#  Fakes
# ═══════════════════════════════════════════════════════════════
class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ScriptedAdapter(ProviderAdapter):
    """Adapter whose outcome per credential key is scripted.

    Each key maps to a list of outcomes consumed in order; an outcome is
    either response text or an exception instance to raise.  The last
    outcome repeats once the list is exhausted.
    """

    def __init__(
        self,
        script: dict[str, list[str | Exception]] | None = None,
        *,
        kind: ProviderKind = ProviderKind.GEMINI,
        supports_attachments: bool = True,
        default: str | Exception = "ok",
    ) -> None:
        self.kind = kind
        self.supports_attachments = supports_attachments
        self._script = {k: list(v) for k, v in (script or {}).items()}
        self._default = default
        self.calls: list[tuple[str, str, list[PromptPart]]] = []

    async def send(
        self,
        parts: Sequence[PromptPart],
        model: str,
        credential: Credential,
        *,
        timeout: float | None = None,
    ) -> str:
        self.calls.append((credential.key, model, list(parts)))
        outcomes = self._script.get(credential.key)
        if outcomes:
            outcome = outcomes.pop(0) if len(outcomes) > 1 else outcomes[0]
        else:
            outcome = self._default
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    @property
    def keys_called(self) -> list[str]:
        return [key for key, _, _ in self.calls]


class InMemoryCredentialSource(CredentialSource):
    def __init__(self, credentials: Sequence[Credential] = ()) -> None:
        self.credentials: list[Credential] = list(credentials)
        self.set_active_calls: list[tuple[str, bool]] = []

    async def list_active(self) -> list[Credential]:
        return [c for c in self.credentials if c.is_active]

    async def list_all(self) -> list[Credential]:
        return list(self.credentials)

    async def set_active(self, key: str, active: bool) -> None:
        self.set_active_calls.append((key, active))
        self.credentials = [
            Credential(c.key, c.provider, c.model, c.name, active) if c.key == key else c
            for c in self.credentials
        ]


class InMemorySettingsSource(SettingsSource):
    def __init__(self, values: dict[str, str] | None = None) -> None:
        self.values = dict(values or {})
        self.reads = 0
        self.fail = False

    async def get_all(self) -> dict[str, str]:
        self.reads += 1
        if self.fail:
            raise ConnectionError("settings store unavailable")
        return dict(self.values)

    async def set(self, key: str, value: str) -> None:
        self.values[key] = value


class InMemoryUsageStore(UsageStore):
    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.increments: list[tuple[str, str, str, bool]] = []

    async def increment(self, user_id: str, month: str, *, feature: str, success: bool) -> None:
        if self.fail:
            raise ConnectionError("usage store unavailable")
        self.increments.append((user_id, month, feature, success))

    async def list_month(self, month: str) -> list[UsageRecord]:
        if self.fail:
            raise ConnectionError("usage store unavailable")
        records: dict[str, UsageRecord] = {}
        for user_id, m, feature, success in self.increments:
            if m != month:
                continue
            rec = records.setdefault(user_id, UsageRecord(user_id=user_id, month=m))
            rec.total_requests += 1
            rec.success_requests += int(success)
            rec.failed_requests += int(not success)
            rec.features[feature] = rec.features.get(feature, 0) + 1
        return list(records.values())


# ═══════════════════════════════════════════════════════════════
#  Fixtures
# ═══════════════════════════════════════════════════════════════
@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def credentials() -> list[Credential]:
    return [
        Credential(key="key-aaaa1111", name="Key A"),
        Credential(key="key-bbbb2222", name="Key B"),
        Credential(key="key-cccc3333", name="Key C"),
    ]


@pytest.fixture
def scripted_adapter() -> type[ScriptedAdapter]:
    return ScriptedAdapter


@pytest.fixture
def credential_source(credentials: list[Credential]) -> InMemoryCredentialSource:
    return InMemoryCredentialSource(credentials)


@pytest.fixture
def settings_source() -> InMemorySettingsSource:
    return InMemorySettingsSource()


@pytest.fixture
def usage_store() -> InMemoryUsageStore:
    return InMemoryUsageStore()
