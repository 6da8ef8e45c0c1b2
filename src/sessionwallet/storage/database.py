"""SQLite/SQLAlchemy backend for the key-value store."""

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator, Optional

from sqlalchemy import delete, select
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from sessionwallet.exceptions import StorageUnavailable
from sessionwallet.storage.base import KeyValueStore
from sessionwallet.storage.models import Base, KeyValueEntry

logger = logging.getLogger(__name__)


def normalize_database_url(database_url: str) -> str:
    """Convert sqlite:/// to sqlite+aiosqlite:/// if needed."""
    if database_url.startswith("sqlite:///") and "aiosqlite" not in database_url:
        return database_url.replace("sqlite:///", "sqlite+aiosqlite:///")
    return database_url


class SqlKeyValueStore(KeyValueStore):
    """Durable key-value store on an async SQLAlchemy engine."""

    storage_type = "database"

    def __init__(self, database_url: str, echo: bool = False):
        self.database_url = normalize_database_url(database_url)
        self._echo = echo
        self._engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker[AsyncSession]] = None
        self._initialized = False

    def _get_engine(self) -> AsyncEngine:
        """Get or create the database engine."""
        if self._engine is None:
            self._engine = create_async_engine(self.database_url, echo=self._echo, future=True)
            self._session_factory = async_sessionmaker(
                bind=self._engine,
                class_=AsyncSession,
                expire_on_commit=False,
                autoflush=False,
            )
        return self._engine

    def _ensure_sqlite_directory(self) -> None:
        url = make_url(self.database_url)
        if url.get_backend_name() != "sqlite" or not url.database or url.database == ":memory:":
            return
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)

    async def init(self) -> None:
        """Create the schema on first use."""
        if self._initialized:
            return
        try:
            self._ensure_sqlite_directory()
            engine = self._get_engine()
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except (SQLAlchemyError, OSError) as e:
            raise StorageUnavailable(f"Cannot initialize key-value store: {e}") from e
        self._initialized = True
        logger.info(f"Key-value store ready at {self.database_url}")

    @asynccontextmanager
    async def _session(self) -> AsyncGenerator[AsyncSession, None]:
        """Get a database session context manager."""
        await self.init()
        assert self._session_factory is not None
        try:
            async with self._session_factory() as session:
                try:
                    yield session
                    await session.commit()
                except Exception:
                    await session.rollback()
                    raise
        except SQLAlchemyError as e:
            raise StorageUnavailable(f"Key-value store error: {e}") from e

    async def get(self, key: str) -> Optional[str]:
        async with self._session() as session:
            result = await session.execute(select(KeyValueEntry.value).where(KeyValueEntry.key == key))
            return result.scalar_one_or_none()

    async def set(self, key: str, value: str) -> None:
        async with self._session() as session:
            entry = await session.get(KeyValueEntry, key)
            if entry is None:
                session.add(KeyValueEntry(key=key, value=value))
            else:
                entry.value = value

    async def remove(self, key: str) -> None:
        async with self._session() as session:
            await session.execute(delete(KeyValueEntry).where(KeyValueEntry.key == key))

    async def keys(self) -> list[str]:
        async with self._session() as session:
            result = await session.execute(select(KeyValueEntry.key).order_by(KeyValueEntry.key))
            return list(result.scalars().all())

    async def close(self) -> None:
        """Close database connections."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None
            self._initialized = False
