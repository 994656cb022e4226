"""Global exception handlers — map dispatcher and domain errors to HTTP responses."""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.responses import ORJSONResponse
import structlog

from app.domain.exceptions import (
    AllCredentialsFailedError,
    ConfigurationError,
    DomainError,
    LLMError,
    ParseError,
    ValidationError,
)

logger = structlog.get_logger(__name__)


def _error(status_code: int, exc: DomainError, details: dict | None = None) -> ORJSONResponse:  # type: ignore[type-arg]
    content: dict[str, object] = {"code": exc.code, "message": exc.message}
    if details:
        content["details"] = details
    return ORJSONResponse(status_code=status_code, content=content)


def register_exception_handlers(app: FastAPI) -> None:
    """Register all domain→HTTP exception mappings."""

    @app.exception_handler(ValidationError)
    async def handle_validation(request: Request, exc: ValidationError) -> ORJSONResponse:
        return _error(422, exc)

    @app.exception_handler(ConfigurationError)
    async def handle_configuration(
        request: Request, exc: ConfigurationError
    ) -> ORJSONResponse:
        logger.error("dispatcher_unconfigured_http", code=exc.code, message=exc.message)
        return _error(503, exc)

    @app.exception_handler(AllCredentialsFailedError)
    async def handle_all_failed(
        request: Request, exc: AllCredentialsFailedError
    ) -> ORJSONResponse:
        logger.error(
            "all_credentials_failed_http",
            attempts=len(exc.errors),
            message=exc.message,
        )
        return _error(502, exc, {"attempts": len(exc.errors)})

    @app.exception_handler(ParseError)
    async def handle_parse(request: Request, exc: ParseError) -> ORJSONResponse:
        logger.warning("unparseable_model_output_http", message=exc.message)
        return _error(502, exc)

    @app.exception_handler(LLMError)
    async def handle_llm(request: Request, exc: LLMError) -> ORJSONResponse:
        logger.error("llm_error_http", provider=exc.provider, message=exc.message)
        return _error(502, exc)

    @app.exception_handler(DomainError)
    async def handle_domain(request: Request, exc: DomainError) -> ORJSONResponse:
        return _error(400, exc)

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception) -> ORJSONResponse:
        logger.exception("unhandled_exception", error=str(exc))
        return ORJSONResponse(
            status_code=500,
            content={
                "code": "INTERNAL_ERROR",
                "message": "An unexpected error occurred",
            },
        )
