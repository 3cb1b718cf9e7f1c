"""Async SQLite engine and session scope for detection storage."""

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator

from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from ..orm.base import Base

logger = logging.getLogger(__name__)


def _configure_sqlite(dbapi_connection, connection_record) -> None:
    # Fan-out writes from parallel image tasks share one file
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA busy_timeout=5000")
    cursor.close()


class DatabaseService:
    """Owns the engine and hands out transactional sessions."""

    def __init__(self, database_path: str | Path):
        self.database_path = Path(database_path).expanduser()
        self.database_path.parent.mkdir(parents=True, exist_ok=True)

        self.engine: AsyncEngine = create_async_engine(
            f"sqlite+aiosqlite:///{self.database_path}",
            echo=False,
            pool_pre_ping=True,
        )
        event.listen(self.engine.sync_engine, "connect", _configure_sqlite)

        self.async_session_factory = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    async def initialize(self) -> None:
        """Create the detections schema if it does not exist yet."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database schema ready at %s", self.database_path)

    async def ping(self) -> bool:
        """Return True when a trivial query succeeds."""
        try:
            async with self.engine.connect() as conn:
                result = await conn.execute(text("SELECT 1"))
                return result.scalar_one() == 1
        except Exception as e:
            logger.error("Database connectivity check failed: %s", e)
            return False

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Yield a session that commits on success and rolls back on error."""
        async with self.async_session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def close(self) -> None:
        await self.engine.dispose()


async def init_db_service(database_path: str | Path) -> DatabaseService:
    """Create a database service and make sure the schema exists."""
    db_service = DatabaseService(database_path)
    await db_service.initialize()
    return db_service
