"""Concrete repository implementations using SQLAlchemy.

These adapters implement the outbound port interfaces, translating between
domain entities and ORM models.  Each call opens its own short session from
the factory, so they are safe to use from background tasks.
"""

from __future__ import annotations

from datetime import datetime, timezone

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.domain.entities import Credential, UsageRecord
from app.domain.enums import ProviderKind
from app.ports.outbound import CredentialSource, SettingsSource, UsageStore

from .models import ApiKeyModel, SystemSettingModel, UserUsageModel

logger = structlog.get_logger(__name__)


# ── Converters ───────────────────────────────────────────────
def _model_to_credential(m: ApiKeyModel) -> Credential:
    try:
        provider = ProviderKind(m.provider)
    except ValueError:
        provider = ProviderKind.GEMINI
    return Credential(
        key=m.key,
        provider=provider,
        model=m.model,
        name=m.name,
        is_active=m.is_active,
    )


def _model_to_usage(m: UserUsageModel) -> UsageRecord:
    return UsageRecord(
        user_id=m.user_id,
        month=m.month,
        total_requests=m.total_requests,
        success_requests=m.success_requests,
        failed_requests=m.failed_requests,
        features=dict(m.features or {}),
        last_active=m.last_active,
    )


# ═══════════════════════════════════════════════════════════════
#  SQLAlchemy Credential Source
# ═══════════════════════════════════════════════════════════════
class SQLAlchemyCredentialSource(CredentialSource):
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def list_active(self) -> list[Credential]:
        stmt = (
            select(ApiKeyModel)
            .where(ApiKeyModel.is_active.is_(True))
            .order_by(ApiKeyModel.created_at.asc(), ApiKeyModel.id.asc())
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [_model_to_credential(r) for r in result.scalars()]

    async def list_all(self) -> list[Credential]:
        stmt = select(ApiKeyModel).order_by(
            ApiKeyModel.created_at.asc(), ApiKeyModel.id.asc()
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [_model_to_credential(r) for r in result.scalars()]

    async def set_active(self, key: str, active: bool) -> None:
        stmt = update(ApiKeyModel).where(ApiKeyModel.key == key).values(is_active=active)
        async with self._session_factory() as session:
            await session.execute(stmt)
            await session.commit()

    async def add(self, credential: Credential) -> None:
        async with self._session_factory() as session:
            session.add(
                ApiKeyModel(
                    key=credential.key,
                    name=credential.name,
                    provider=credential.provider.value,
                    model=credential.model,
                    is_active=credential.is_active,
                )
            )
            await session.commit()


# ═══════════════════════════════════════════════════════════════
#  SQLAlchemy Settings Source
# ═══════════════════════════════════════════════════════════════
class SQLAlchemySettingsSource(SettingsSource):
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get_all(self) -> dict[str, str]:
        async with self._session_factory() as session:
            result = await session.execute(select(SystemSettingModel))
            return {row.key: row.value for row in result.scalars()}

    async def set(self, key: str, value: str) -> None:
        async with self._session_factory() as session:
            model = await session.get(SystemSettingModel, key)
            if model is None:
                session.add(SystemSettingModel(key=key, value=value))
            else:
                model.value = value
            await session.commit()


# ═══════════════════════════════════════════════════════════════
#  SQLAlchemy Usage Store
# ═══════════════════════════════════════════════════════════════
class SQLAlchemyUsageStore(UsageStore):
    """Per (user, month) counters with increment-or-create semantics."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def increment(
        self, user_id: str, month: str, *, feature: str, success: bool
    ) -> None:
        try:
            await self._increment_once(user_id, month, feature, success)
        except IntegrityError:
            # Lost the insert race for a new (user, month) row; it exists now
            logger.debug("usage_row_insert_race", user_id=user_id, month=month)
            await self._increment_once(user_id, month, feature, success)

    async def _increment_once(
        self, user_id: str, month: str, feature: str, success: bool
    ) -> None:
        stmt = select(UserUsageModel).where(
            UserUsageModel.user_id == user_id, UserUsageModel.month == month
        )
        async with self._session_factory() as session:
            row = (await session.execute(stmt)).scalar_one_or_none()
            if row is None:
                row = UserUsageModel(
                    user_id=user_id,
                    month=month,
                    total_requests=0,
                    success_requests=0,
                    failed_requests=0,
                    features={},
                )
                session.add(row)

            row.total_requests += 1
            if success:
                row.success_requests += 1
            else:
                row.failed_requests += 1
            # Reassign so the JSON column is flagged dirty
            features = dict(row.features or {})
            features[feature] = int(features.get(feature, 0)) + 1
            row.features = features
            row.last_active = datetime.now(timezone.utc)
            await session.commit()

    async def list_month(self, month: str) -> list[UsageRecord]:
        stmt = (
            select(UserUsageModel)
            .where(UserUsageModel.month == month)
            .order_by(UserUsageModel.total_requests.desc())
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [_model_to_usage(r) for r in result.scalars()]
