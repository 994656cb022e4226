"""OpenAI chat-completions adapter (text only)."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import httpx

from app.adapters.outbound.llm.base import HttpProviderAdapter
from app.domain.entities import Attachment, Credential, PromptPart, TextPart
from app.domain.enums import ProviderKind
from app.domain.exceptions import EmptyResponseError, UnsupportedAttachmentError


class OpenAIAdapter(HttpProviderAdapter):
    kind = ProviderKind.OPENAI
    supports_attachments = False

    def __init__(
        self,
        client: httpx.AsyncClient,
        base_url: str = "https://api.openai.com/v1",
    ) -> None:
        super().__init__(client, base_url)

    def build_messages(self, parts: Sequence[PromptPart]) -> list[dict[str, str]]:
        """Context parts become system messages; attachments are rejected."""
        messages: list[dict[str, str]] = []
        for part in parts:
            if isinstance(part, Attachment):
                raise UnsupportedAttachmentError(self.kind.value)
            if isinstance(part, TextPart):
                role = "system" if part.is_context else "user"
                messages.append({"role": role, "content": part.text})
        return messages

    async def send(
        self,
        parts: Sequence[PromptPart],
        model: str,
        credential: Credential,
        *,
        timeout: float | None = None,
    ) -> str:
        # Rejects attachments before any network I/O
        body: dict[str, Any] = {"model": model, "messages": self.build_messages(parts)}
        data = await self._post_json(
            f"{self._base_url}/chat/completions",
            body,
            headers={
                "Authorization": f"Bearer {credential.key}",
                "Content-Type": "application/json",
            },
            timeout=timeout,
        )
        try:
            text = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            text = None
        if not isinstance(text, str) or not text.strip():
            raise EmptyResponseError(self.kind.value)
        return text
