"""Core types for the credential failover framework."""

from __future__ import annotations

from dataclasses import dataclass, field

from app.domain.enums import ProviderKind


@dataclass
class CredentialStats:
    """Runtime counters for one credential (process memory only)."""

    use_count: int = 0
    failure_count: int = 0
    last_used_at: float = 0.0


@dataclass
class DispatcherState:
    """All long-lived mutable state owned by one dispatcher instance.

    Attributes:
        stats:      Credential identity → runtime counters.
        cooldowns:  Credential identity → clock reading when it becomes
                    selectable again.
        cursor:     Round-robin cursor, advanced once per top-level call.
    """

    stats: dict[str, CredentialStats] = field(default_factory=dict)
    cooldowns: dict[str, float] = field(default_factory=dict)
    cursor: int = 0


@dataclass
class CredentialHealth:
    """Read-only snapshot of a credential for admin views."""

    name: str
    masked_key: str
    provider: ProviderKind
    model: str
    use_count: int = 0
    failure_count: int = 0
    last_used_at: float | None = None
    cooling_down: bool = False
    cooldown_remaining_s: float = 0.0
