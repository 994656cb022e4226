"""Provider adapters — one per provider family.

Each adapter is a pure wire codec over a shared ``httpx.AsyncClient``.
Rotation, failover and cooldowns live in ``app.shared.providers``.
"""

from __future__ import annotations

import httpx

from app.adapters.outbound.llm.base import (
    HttpProviderAdapter,
    parse_retry_after,
    provider_error_message,
)
from app.adapters.outbound.llm.gemini import GeminiAdapter
from app.adapters.outbound.llm.openai import OpenAIAdapter
from app.config import Settings
from app.domain.enums import ProviderKind
from app.ports.outbound import ProviderAdapter


def build_adapters(
    client: httpx.AsyncClient, settings: Settings
) -> dict[ProviderKind, ProviderAdapter]:
    """Closed provider set keyed by ``ProviderKind``."""
    return {
        ProviderKind.GEMINI: GeminiAdapter(client, settings.gemini_base_url),
        ProviderKind.OPENAI: OpenAIAdapter(client, settings.openai_base_url),
    }


__all__ = [
    "GeminiAdapter",
    "HttpProviderAdapter",
    "OpenAIAdapter",
    "build_adapters",
    "parse_retry_after",
    "provider_error_message",
]
