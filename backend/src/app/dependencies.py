"""Dependency injection container — wires adapters to ports.

FastAPI's ``Depends()`` system uses these factories to inject the
correct adapter implementations into route handlers.  Every long-lived
collaborator is a process-wide singleton built lazily from settings.
"""

from __future__ import annotations

import httpx
import structlog
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from app.adapters.outbound.cache import RedisCacheAdapter
from app.adapters.outbound.llm import build_adapters
from app.adapters.outbound.persistence.database import (
    create_engine,
    create_session_factory,
    init_models,
)
from app.adapters.outbound.persistence.repositories import (
    SQLAlchemyCredentialSource,
    SQLAlchemySettingsSource,
    SQLAlchemyUsageStore,
)
from app.application.features import LearningFeatureService
from app.application.services import AIGatewayService
from app.config import Settings, get_settings
from app.ports.outbound import CachePort
from app.shared.providers import (
    ConfigCache,
    CredentialPool,
    FailoverDispatcher,
    UsageTelemetry,
)

logger = structlog.get_logger(__name__)


# ── Settings ─────────────────────────────────────────────────
_settings: Settings | None = None


def get_cached_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = get_settings()
    return _settings


def use_settings(settings: Settings) -> None:
    """Pin the settings every factory below builds from (app factory, tests)."""
    global _settings
    _settings = settings


# ── Singletons ───────────────────────────────────────────────
_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None
_cache: RedisCacheAdapter | None = None
_http_client: httpx.AsyncClient | None = None
_dispatcher: FailoverDispatcher | None = None
_config_cache: ConfigCache | None = None
_telemetry: UsageTelemetry | None = None
_gateway: AIGatewayService | None = None
_features: LearningFeatureService | None = None


def get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        _engine = create_engine(get_cached_settings())
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _session_factory
    if _session_factory is None:
        _session_factory = create_session_factory(get_cached_settings(), get_engine())
    return _session_factory


def get_cache() -> CachePort:
    global _cache
    if _cache is None:
        s = get_cached_settings()
        _cache = RedisCacheAdapter(s.redis_url, s.redis_max_connections)
    return _cache


def get_http_client() -> httpx.AsyncClient:
    global _http_client
    if _http_client is None:
        s = get_cached_settings()
        _http_client = httpx.AsyncClient(timeout=s.llm_request_timeout_seconds)
    return _http_client


def get_dispatcher() -> FailoverDispatcher:
    global _dispatcher
    if _dispatcher is None:
        s = get_cached_settings()
        _dispatcher = FailoverDispatcher(
            build_adapters(get_http_client(), s),
            pool=CredentialPool(
                cooldown_seconds=s.llm_cooldown_seconds,
                honor_retry_after=s.llm_honor_retry_after,
            ),
            request_timeout_s=s.llm_request_timeout_seconds,
            attachment_timeout_s=s.llm_attachment_timeout_seconds,
        )
    return _dispatcher


def get_credential_source() -> SQLAlchemyCredentialSource:
    return SQLAlchemyCredentialSource(get_session_factory())


def get_settings_source() -> SQLAlchemySettingsSource:
    return SQLAlchemySettingsSource(get_session_factory())


def get_usage_store() -> SQLAlchemyUsageStore:
    return SQLAlchemyUsageStore(get_session_factory())


def get_config_cache() -> ConfigCache:
    global _config_cache
    if _config_cache is None:
        _config_cache = ConfigCache(
            get_settings_source(),
            ttl_seconds=get_cached_settings().config_cache_ttl_seconds,
        )
    return _config_cache


def get_telemetry() -> UsageTelemetry:
    global _telemetry
    if _telemetry is None:
        _telemetry = UsageTelemetry(get_usage_store())
    return _telemetry


def get_gateway_service() -> AIGatewayService:
    global _gateway
    if _gateway is None:
        s = get_cached_settings()
        _gateway = AIGatewayService(
            dispatcher=get_dispatcher(),
            credentials=get_credential_source(),
            config=get_config_cache(),
            settings_source=get_settings_source(),
            telemetry=get_telemetry(),
            usage_store=get_usage_store(),
            default_model=s.default_model,
            test_timeout_s=s.llm_test_timeout_seconds,
            test_delay_s=s.credential_test_delay_seconds,
        )
    return _gateway


def get_feature_service() -> LearningFeatureService:
    global _features
    if _features is None:
        s = get_cached_settings()
        _features = LearningFeatureService(
            get_gateway_service(),
            get_cache(),
            retry_attempts=s.feature_retry_attempts,
            cache_ttl_s=s.feature_cache_ttl_seconds,
        )
    return _features


# ── Lifecycle ────────────────────────────────────────────────
async def startup() -> None:
    if get_cached_settings().database_create_tables:
        await init_models(get_engine())
        logger.info("database_tables_ensured")


async def shutdown() -> None:
    """Flush telemetry, then release network resources."""
    global _engine, _session_factory, _cache, _http_client
    global _dispatcher, _config_cache, _telemetry, _gateway, _features

    if _telemetry is not None:
        await _telemetry.drain()
    if _cache is not None:
        await _cache.close()
    if _http_client is not None:
        await _http_client.aclose()
    if _engine is not None:
        await _engine.dispose()

    _engine = _session_factory = _cache = _http_client = None
    _dispatcher = _config_cache = _telemetry = _gateway = _features = None
