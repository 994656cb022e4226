"""Outbound ports — interfaces that infrastructure adapters must implement.

These are the *driven* ports in hexagonal architecture.  The dispatcher and
application layers depend only on these abstractions, never on concrete
implementations (database drivers, HTTP clients, etc.).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence

from app.domain.entities import Credential, PromptPart, UsageRecord
from app.domain.enums import ProviderKind


# ═══════════════════════════════════════════════════════════════
#  Provider port
# ═══════════════════════════════════════════════════════════════
class ProviderAdapter(ABC):
    """Wire encoding/decoding for exactly one provider family.

    Implementations are stateless: the credential is supplied per call and
    must not be retained.  They raise ``RateLimitedError`` for quota
    exhaustion and another ``LLMError`` subclass for everything else.
    """

    kind: ProviderKind
    supports_attachments: bool = False

    @abstractmethod
    async def send(
        self,
        parts: Sequence[PromptPart],
        model: str,
        credential: Credential,
        *,
        timeout: float | None = None,
    ) -> str:
        """Send one generation request and return the response text."""
        ...


# ═══════════════════════════════════════════════════════════════
#  Credential source
# ═══════════════════════════════════════════════════════════════
class CredentialSource(ABC):
    """Read access to configured credentials plus activation toggles."""

    @abstractmethod
    async def list_active(self) -> list[Credential]: ...

    @abstractmethod
    async def list_all(self) -> list[Credential]: ...

    @abstractmethod
    async def set_active(self, key: str, active: bool) -> None: ...

    async def deactivate(self, key: str) -> None:
        await self.set_active(key, False)


# ═══════════════════════════════════════════════════════════════
#  Settings source
# ═══════════════════════════════════════════════════════════════
class SettingsSource(ABC):
    """Key/value feature → model mapping."""

    @abstractmethod
    async def get_all(self) -> dict[str, str]: ...

    @abstractmethod
    async def set(self, key: str, value: str) -> None: ...


# ═══════════════════════════════════════════════════════════════
#  Usage store
# ═══════════════════════════════════════════════════════════════
class UsageStore(ABC):
    """Per (user, month) usage aggregates with upsert-on-absence increments."""

    @abstractmethod
    async def increment(
        self, user_id: str, month: str, *, feature: str, success: bool
    ) -> None: ...

    @abstractmethod
    async def list_month(self, month: str) -> list[UsageRecord]: ...


# ═══════════════════════════════════════════════════════════════
#  Cache port
# ═══════════════════════════════════════════════════════════════
class CachePort(ABC):
    """Key-value cache for finished feature results."""

    @abstractmethod
    async def get(self, key: str) -> str | None: ...

    @abstractmethod
    async def set(
        self, key: str, value: str, *, ttl_seconds: int | None = None
    ) -> None: ...

    @abstractmethod
    async def delete(self, key: str) -> None: ...

    @abstractmethod
    async def close(self) -> None: ...

    @abstractmethod
    async def health_check(self) -> bool: ...
