"""Redis cache adapter implementing CachePort.

Holds finished feature results (hints, upgrades, exercise sets) with a TTL.
Falls back to a process-local dict when no usable Redis URL is configured.
"""

from __future__ import annotations

import time
from collections.abc import Callable

import redis.asyncio as redis
import structlog

from app.ports.outbound import CachePort

logger = structlog.get_logger(__name__)


class MemoryCacheAdapter(CachePort):
    """In-memory cache used when Redis is unavailable."""

    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        self._data: dict[str, str] = {}
        self._expiry: dict[str, float] = {}
        self._clock = clock
        logger.info("cache_initialized_memory_fallback")

    async def get(self, key: str) -> str | None:
        if key in self._expiry and self._expiry[key] <= self._clock():
            self._data.pop(key, None)
            del self._expiry[key]
            return None
        return self._data.get(key)

    async def set(self, key: str, value: str, *, ttl_seconds: int | None = None) -> None:
        self._data[key] = value
        if ttl_seconds:
            self._expiry[key] = self._clock() + ttl_seconds
        else:
            self._expiry.pop(key, None)

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)
        self._expiry.pop(key, None)

    async def close(self) -> None:
        self._data.clear()
        self._expiry.clear()

    async def health_check(self) -> bool:
        return True


class RedisCacheAdapter(CachePort):
    """Async Redis adapter; Redis errors degrade to cache misses."""

    def __init__(self, url: str, max_connections: int = 20) -> None:
        is_local = "localhost" in url or "127.0.0.1" in url
        self._use_memory = not url or is_local
        self._memory: MemoryCacheAdapter | None = None

        if self._use_memory:
            logger.warning("redis_url_missing_or_local_falling_back_to_memory")
            self._memory = MemoryCacheAdapter()
            return

        try:
            self._pool = redis.ConnectionPool.from_url(
                url,
                max_connections=max_connections,
                decode_responses=True,
            )
            self._client = redis.Redis(connection_pool=self._pool)
        except Exception as e:
            logger.error("redis_init_failed", error=str(e))
            self._use_memory = True
            self._memory = MemoryCacheAdapter()

    @property
    def uses_memory(self) -> bool:
        return self._use_memory

    async def get(self, key: str) -> str | None:
        if self._memory is not None:
            return await self._memory.get(key)
        try:
            return await self._client.get(key)
        except redis.RedisError as exc:
            logger.error("redis_get_error", key=key, error=str(exc))
            return None

    async def set(self, key: str, value: str, *, ttl_seconds: int | None = None) -> None:
        if self._memory is not None:
            return await self._memory.set(key, value, ttl_seconds=ttl_seconds)
        try:
            if ttl_seconds:
                await self._client.setex(key, ttl_seconds, value)
            else:
                await self._client.set(key, value)
        except redis.RedisError as exc:
            logger.error("redis_set_error", key=key, error=str(exc))

    async def delete(self, key: str) -> None:
        if self._memory is not None:
            return await self._memory.delete(key)
        try:
            await self._client.delete(key)
        except redis.RedisError as exc:
            logger.error("redis_delete_error", key=key, error=str(exc))

    async def close(self) -> None:
        if self._memory is not None:
            return await self._memory.close()
        await self._client.aclose()
        await self._pool.aclose()

    async def health_check(self) -> bool:
        if self._memory is not None:
            return True
        try:
            return bool(await self._client.ping())
        except redis.RedisError:
            return False
