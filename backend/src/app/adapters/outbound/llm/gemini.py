"""Gemini ``generateContent`` adapter (multimodal)."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import httpx

from app.adapters.outbound.llm.base import HttpProviderAdapter
from app.domain.entities import Attachment, Credential, PromptPart, TextPart
from app.domain.enums import ProviderKind
from app.domain.exceptions import EmptyResponseError, ValidationError


class GeminiAdapter(HttpProviderAdapter):
    """Context goes first as a ``Context:`` text part, then the message, then
    at most one ``inline_data`` attachment."""

    kind = ProviderKind.GEMINI
    supports_attachments = True

    def __init__(
        self,
        client: httpx.AsyncClient,
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
    ) -> None:
        super().__init__(client, base_url)

    @staticmethod
    def build_parts(parts: Sequence[PromptPart]) -> list[dict[str, Any]]:
        wire: list[dict[str, Any]] = []
        attachments = 0
        for part in parts:
            if isinstance(part, Attachment):
                attachments += 1
                if attachments > 1:
                    raise ValidationError("Only one binary attachment is allowed per request")
                wire.append(
                    {"inline_data": {"mime_type": part.mime_type, "data": part.data}}
                )
            elif isinstance(part, TextPart):
                text = f"Context: {part.text}\n" if part.is_context else part.text
                wire.append({"text": text})
        return wire

    async def send(
        self,
        parts: Sequence[PromptPart],
        model: str,
        credential: Credential,
        *,
        timeout: float | None = None,
    ) -> str:
        data = await self._post_json(
            f"{self._base_url}/models/{model}:generateContent",
            {"contents": [{"parts": self.build_parts(parts)}]},
            params={"key": credential.key},
            timeout=timeout,
        )
        try:
            text = data["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError):
            text = None
        if not isinstance(text, str) or not text.strip():
            raise EmptyResponseError(self.kind.value)
        return text
