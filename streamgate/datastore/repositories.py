"""
Repository layer and the configuration store built on it
"""

from typing import Callable, Protocol

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from streamgate.datastore.models import ApiEndpointDB, SettingDB


class ApiEndpointRepository:
    """Upstream endpoint repository"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_active_url(self) -> str | None:
        """URL of the endpoint currently marked active"""
        result = await self.session.execute(
            select(ApiEndpointDB.url).where(ApiEndpointDB.is_active.is_(True)).limit(1)
        )
        return result.scalar_one_or_none()


class SettingRepository:
    """Settings repository"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, key: str) -> str | None:
        result = await self.session.execute(
            select(SettingDB.value).where(SettingDB.key == key)
        )
        return result.scalar_one_or_none()


class ConfigStore(Protocol):
    """Read-only view of externally managed configuration."""

    async def get_active_endpoint(self) -> str | None: ...

    async def get_setting(self, key: str) -> str | None: ...


class DatabaseConfigStore:
    """
    ConfigStore backed by the relational store.

    Any database failure is logged and reported as "absent" so callers can
    fall through to their next option.
    """

    def __init__(
        self,
        session_factory: Callable[[], async_sessionmaker[AsyncSession]],
    ):
        self._session_factory = session_factory

    async def get_active_endpoint(self) -> str | None:
        try:
            async with self._session_factory()() as session:
                return await ApiEndpointRepository(session).get_active_url()
        except Exception as e:
            logger.warning(f"Could not read active API endpoint: {e}")
            return None

    async def get_setting(self, key: str) -> str | None:
        try:
            async with self._session_factory()() as session:
                return await SettingRepository(session).get(key)
        except Exception as e:
            logger.warning(f"Could not read setting '{key}': {e}")
            return None
