"""
Async SQLAlchemy engine and session handling for the PostgreSQL store.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from automation_engine.config.settings import PostgresSettings

logger = logging.getLogger(__name__)


class Database:
    """
    Owns the async engine and hands out unit-of-work sessions.

    ``init()`` only builds the pool; the first connection is made lazily
    by whichever session or ``ping()`` needs it.
    """

    def __init__(self, settings: Optional[PostgresSettings] = None, url: Optional[str] = None):
        self.settings = settings or PostgresSettings()
        self.url = url or self.settings.url
        self._engine: Optional[AsyncEngine] = None
        self._sessions: Optional[async_sessionmaker[AsyncSession]] = None

    async def init(self) -> None:
        if self._engine is not None:
            return
        self._engine = create_async_engine(
            self.url,
            pool_size=self.settings.pool_size,
            max_overflow=self.settings.max_overflow,
            pool_timeout=self.settings.pool_timeout,
            pool_pre_ping=True,
        )
        self._sessions = async_sessionmaker(self._engine, expire_on_commit=False, autoflush=False)
        logger.info(f"Database engine created for {self.settings.host}:{self.settings.port}/{self.settings.database}")

    async def close(self) -> None:
        if self._engine is None:
            return
        await self._engine.dispose()
        self._engine = None
        self._sessions = None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError("Database.init() has not been awaited")
        return self._engine

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """
        Yield a session; commit when the block exits cleanly, roll back otherwise.

        Usage:
            async with database.session() as session:
                session.add(row)
        """
        if self._sessions is None:
            raise RuntimeError("Database.init() has not been awaited")

        async with self._sessions() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise
            await session.commit()

    async def ping(self) -> bool:
        """Run a trivial query; False when the server cannot be reached."""
        if self._engine is None:
            return False
        try:
            async with self._engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except (SQLAlchemyError, OSError) as e:
            logger.warning(f"PostgreSQL ping failed: {e}")
            return False
        return True
