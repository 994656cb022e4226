"""Domain-specific exception hierarchy.

All exceptions inherit from ``DomainError`` so callers can catch the entire
family in one clause while still discriminating on subclass.
"""

from __future__ import annotations


class DomainError(Exception):
    """Base class for all domain-layer errors."""

    def __init__(self, message: str, *, code: str = "DOMAIN_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(message)


# ── Validation ───────────────────────────────────────────────
class ValidationError(DomainError):
    """Input failed domain validation rules."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="VALIDATION_ERROR")


# ── Configuration ────────────────────────────────────────────
class ConfigurationError(DomainError):
    """The dispatcher cannot run without administrator intervention."""

    def __init__(self, message: str, *, code: str = "CONFIGURATION_ERROR") -> None:
        super().__init__(message, code=code)


class NoCredentialsError(ConfigurationError):
    def __init__(self) -> None:
        super().__init__("No API credentials configured", code="NO_CREDENTIALS")


# ── Provider calls (credential-scoped) ───────────────────────
class LLMError(DomainError):
    """Failure of a single provider call made with one credential."""

    def __init__(self, provider: str, message: str, *, code: str = "LLM_ERROR") -> None:
        self.provider = provider
        super().__init__(f"[{provider}] {message}", code=code)


class RateLimitedError(LLMError):
    """Provider signalled quota exhaustion (HTTP 429)."""

    def __init__(
        self, provider: str, message: str = "Rate limit exceeded", *, retry_after: float | None = None
    ) -> None:
        self.retry_after = retry_after
        super().__init__(provider, message, code="RATE_LIMITED")


class TransientProviderError(LLMError):
    """Network, timeout, auth or 5xx failure. No cooldown is applied."""

    def __init__(
        self, provider: str, message: str, *, status_code: int | None = None
    ) -> None:
        self.status_code = status_code
        super().__init__(provider, message, code="PROVIDER_ERROR")


class EmptyResponseError(TransientProviderError):
    def __init__(self, provider: str) -> None:
        super().__init__(provider, "No content returned")
        self.code = "EMPTY_RESPONSE"


class UnsupportedAttachmentError(LLMError):
    """A binary attachment was sent to a text-only provider."""

    def __init__(self, provider: str) -> None:
        super().__init__(
            provider,
            "Provider does not accept binary attachments",
            code="UNSUPPORTED_ATTACHMENT",
        )


# ── Structured output ───────────────────────────────────────
class ParseError(DomainError):
    """Model text did not match the expected delimited format."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="PARSE_ERROR")


# ── Aggregate ───────────────────────────────────────────────
class AllCredentialsFailedError(DomainError):
    """Every credential in the ordered candidate list failed.

    ``errors`` holds one ``(name, masked_key, message)`` entry per attempt.
    """

    def __init__(
        self,
        errors: list[tuple[str, str, str]],
        last_error: BaseException | None = None,
    ) -> None:
        self.errors = errors
        self.last_error = last_error
        detail = str(last_error) if last_error is not None else "no attempts made"
        super().__init__(
            f"All active API keys failed. Last error: {detail}",
            code="ALL_CREDENTIALS_FAILED",
        )
