"""IntakeDatabase — lazily built async engine and session factory.

One instance per process (or per pipeline).  Nothing connects until the
first session is opened; call :meth:`IntakeDatabase.dispose` on shutdown.

Usage::

    database = IntakeDatabase.from_env()
    async with database.session_factory() as db:
        ...
        await db.commit()
    await database.dispose()
"""

from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from intake_db.config import DatabaseSettings

logger = logging.getLogger(__name__)


class IntakeDatabase:
    def __init__(self, settings: DatabaseSettings) -> None:
        self._settings = settings
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None

    @classmethod
    def from_env(cls) -> "IntakeDatabase":
        return cls(DatabaseSettings.from_env())

    @property
    def settings(self) -> DatabaseSettings:
        return self._settings

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            self._engine = create_async_engine(
                self._settings.async_url,
                echo=self._settings.echo,
                pool_size=self._settings.pool_size,
                max_overflow=self._settings.max_overflow,
            )
            logger.info("Created intake database engine for %s", self._engine.url.render_as_string())
        return self._engine

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            self._session_factory = async_sessionmaker(
                bind=self.engine,
                class_=AsyncSession,
                expire_on_commit=False,
            )
        return self._session_factory

    @property
    def started(self) -> bool:
        return self._engine is not None

    async def dispose(self) -> None:
        """Close pooled connections; the next session rebuilds the engine."""
        if self._engine is not None:
            await self._engine.dispose()
        self._engine = None
        self._session_factory = None
