"""ASGI entry-point for the AI gateway."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse

from app import dependencies
from app.adapters.inbound.rest.routers import admin_router, ai_router, health_router
from app.config import Settings, get_settings
from app.shared.errors import register_exception_handlers
from app.shared.middleware import AccessMiddleware, RequestIdMiddleware
from app.shared.observability import configure_logging

logger = structlog.get_logger(__name__)

API_PREFIX = "/api/v1"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings: Settings = app.state.settings
    configure_logging(log_level=settings.log_level, json_logs=settings.is_production)
    logger.info("gateway_starting", env=settings.app_env.value)
    await dependencies.startup()

    yield

    try:
        await dependencies.shutdown()
    except Exception:
        logger.exception("gateway_shutdown_failed")
    logger.info("gateway_stopped")


def _install_middleware(app: FastAPI, settings: Settings) -> None:
    origins = settings.cors_origins
    wildcard = "*" in origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[] if wildcard else origins,
        allow_origin_regex=".*" if wildcard else None,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(AccessMiddleware)
    # Added last so the request id is bound before access logging runs
    app.add_middleware(RequestIdMiddleware)


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the gateway app; ``settings`` pins every dependency factory."""
    settings = settings or get_settings()
    dependencies.use_settings(settings)

    app = FastAPI(
        title="Language Tutor AI Gateway",
        description=(
            "Rotates tutoring requests across a pool of provider API keys with "
            "cooldowns and failover, and exposes key administration."
        ),
        version="0.1.0",
        default_response_class=ORJSONResponse,
        lifespan=lifespan,
    )
    app.state.settings = settings

    _install_middleware(app, settings)
    register_exception_handlers(app)
    for router in (health_router, ai_router, admin_router):
        app.include_router(router, prefix=API_PREFIX)

    @app.get("/", include_in_schema=False)
    async def root() -> dict[str, str]:
        return {
            "service": "language-tutor-ai-gateway",
            "docs": "/docs",
            "health": f"{API_PREFIX}/health",
        }

    return app


app = create_app()
