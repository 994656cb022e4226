"""Domain entities for outbound AI requests.

Credentials are owned by the external configuration store; the dispatcher
only ever holds a read-only snapshot, reloaded on every top-level call.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Union

from app.domain.enums import FeatureKey, ProviderKind


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def mask_secret(secret: str) -> str:
    """Render a secret as ``...abcd`` for logs and admin views."""
    return f"...{secret[-4:]}" if secret else "..."


def month_key(now: datetime | None = None) -> str:
    """Calendar month bucket (``YYYY-MM``) used for usage aggregates."""
    now = now or _utcnow()
    return f"{now.year:04d}-{now.month:02d}"


# ═══════════════════════════════════════════════════════════════
#  Credential
# ═══════════════════════════════════════════════════════════════
@dataclass(frozen=True, slots=True)
class Credential:
    """One provider access secret plus its model and provider tag."""

    key: str
    provider: ProviderKind = ProviderKind.GEMINI
    model: str = "gemini-2.5-flash"
    name: str = "Gemini Key"
    is_active: bool = True

    @property
    def identity(self) -> str:
        return self.key

    @property
    def masked_key(self) -> str:
        return mask_secret(self.key)


# ═══════════════════════════════════════════════════════════════
#  Prompt parts
# ═══════════════════════════════════════════════════════════════
@dataclass(frozen=True, slots=True)
class TextPart:
    """Text segment; ``is_context`` marks system/context instructions."""

    text: str
    is_context: bool = False


@dataclass(frozen=True, slots=True)
class Attachment:
    """Binary payload (base64 encoded) tagged with its MIME type."""

    data: str
    mime_type: str = "audio/webm"


PromptPart = Union[TextPart, Attachment]


@dataclass(frozen=True, slots=True)
class GenerationRequest:
    """A generic generation request, independent of provider wire format."""

    prompt: str
    context: str = ""
    feature: str = FeatureKey.GENERAL.value
    attachment: Attachment | None = None
    user_id: str | None = None
    model: str | None = None

    @property
    def has_attachment(self) -> bool:
        return self.attachment is not None

    def parts(self) -> list[PromptPart]:
        """Ordered prompt parts: context, message, then the attachment."""
        parts: list[PromptPart] = []
        if self.context:
            parts.append(TextPart(self.context, is_context=True))
        if self.prompt:
            parts.append(TextPart(self.prompt))
        if self.attachment is not None:
            parts.append(self.attachment)
        return parts


@dataclass(frozen=True, slots=True)
class DispatchResult:
    """Winning attempt of a dispatch."""

    text: str
    credential: Credential
    attempts: int
    latency_ms: float = 0.0


# ═══════════════════════════════════════════════════════════════
#  Usage
# ═══════════════════════════════════════════════════════════════
@dataclass(slots=True)
class UsageRecord:
    """Per (user, month) aggregate kept by the usage store."""

    user_id: str
    month: str
    total_requests: int = 0
    success_requests: int = 0
    failed_requests: int = 0
    features: dict[str, int] = field(default_factory=dict)
    last_active: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True, slots=True)
class CredentialTestResult:
    success: bool
    message: str
    key_deactivated: bool = False
