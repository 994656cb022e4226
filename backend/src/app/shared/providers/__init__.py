"""Credential-pool resilience framework.

Provides round-robin rotation, rate-limit cooldowns, sequential failover,
operation-level retry, usage telemetry, and a TTL config cache for outbound
AI provider calls.
"""

from app.shared.providers.types import (
    CredentialHealth,
    CredentialStats,
    DispatcherState,
)
from app.shared.providers.key_manager import CredentialPool
from app.shared.providers.router import CredentialRouter
from app.shared.providers.gateway import FailoverDispatcher
from app.shared.providers.retry import with_retry
from app.shared.providers.telemetry import UsageTelemetry, UserStats
from app.shared.providers.config_cache import ConfigCache

__all__ = [
    "ConfigCache",
    "CredentialHealth",
    "CredentialPool",
    "CredentialRouter",
    "CredentialStats",
    "DispatcherState",
    "FailoverDispatcher",
    "UsageTelemetry",
    "UserStats",
    "with_retry",
]
