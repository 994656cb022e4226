"""Shared HTTP plumbing for provider adapters.

Each concrete adapter owns its wire format; this module owns the outcome
classification every adapter must agree on: 429 is a rate limit, anything
else that is not a 2xx (or never arrived) is a transient provider error.
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from app.domain.exceptions import RateLimitedError, TransientProviderError
from app.ports.outbound import ProviderAdapter

logger = structlog.get_logger(__name__)


def parse_retry_after(value: str | None) -> float | None:
    """Numeric ``Retry-After`` header in seconds; HTTP-date forms are ignored."""
    if not value:
        return None
    try:
        seconds = float(value.strip())
    except ValueError:
        return None
    return seconds if seconds >= 0 else None


def provider_error_message(response: httpx.Response) -> str:
    """Best-effort ``error.message`` from a provider error body."""
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str):
            return error
    return f"HTTP {response.status_code}"


class HttpProviderAdapter(ProviderAdapter):
    """Base for adapters that speak JSON over HTTPS via a shared ``httpx.AsyncClient``."""

    def __init__(self, client: httpx.AsyncClient, base_url: str) -> None:
        self._client = client
        self._base_url = base_url.rstrip("/")

    async def _post_json(
        self,
        url: str,
        body: dict[str, Any],
        *,
        headers: dict[str, str] | None = None,
        params: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        provider = self.kind.value
        try:
            response = await self._client.post(
                url,
                json=body,
                headers=headers,
                params=params,
                timeout=timeout,
            )
        except httpx.TimeoutException as exc:
            raise TransientProviderError(provider, f"Timeout: {type(exc).__name__}") from exc
        except httpx.HTTPError as exc:
            # Transport errors can echo the URL, which may carry the key
            raise TransientProviderError(provider, f"Transport error: {type(exc).__name__}") from exc

        if response.status_code == 429:
            raise RateLimitedError(
                provider,
                provider_error_message(response),
                retry_after=parse_retry_after(response.headers.get("Retry-After")),
            )
        if response.status_code >= 400:
            raise TransientProviderError(
                provider,
                provider_error_message(response),
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise TransientProviderError(provider, "Malformed JSON response") from exc
        if not isinstance(data, dict):
            raise TransientProviderError(provider, "Unexpected response shape")
        return data
