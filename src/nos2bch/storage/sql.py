"""SQLite key-value storage — async SQLAlchemy engine & session management.

A single ``kv_store`` table maps string keys to JSON values. The engine is
created on :meth:`SQLStorage.open` and the table is created if missing.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sqlalchemy import JSON, String, delete, select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

if TYPE_CHECKING:
    from nos2bch.config.settings import StorageConfig


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for storage tables."""


class KVEntry(Base):
    """One stored key and its JSON value."""

    __tablename__ = "kv_store"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    value: Mapped[Any] = mapped_column(JSON, nullable=True)


class SQLStorage:
    """Async key-value store backed by SQLAlchemy.

    Usage::

        store = SQLStorage(storage_config)
        await store.open()
        await store.set("private_key", "ab..")
        await store.close()
    """

    def __init__(self, config: StorageConfig) -> None:
        self._config = config
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None

    @property
    def is_open(self) -> bool:
        """Check if the storage is open."""
        return self._engine is not None

    async def open(self) -> None:
        """Create the engine and the ``kv_store`` table."""
        self._engine = create_async_engine(self._config.dsn, echo=self._config.debug_sql)
        self._session_factory = async_sessionmaker(
            self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        """Dispose the engine and release all connections."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None

    def _session(self) -> AsyncSession:
        if self._session_factory is None:
            msg = "Storage is not open. Call open() first."
            raise RuntimeError(msg)
        return self._session_factory()

    async def get(self, key: str) -> Any | None:
        """Return the value under *key*, or None."""
        async with self._session() as session:
            entry = await session.get(KVEntry, key)
            return None if entry is None else entry.value

    async def get_many(self, keys: list[str]) -> dict[str, Any]:
        """Return the present keys among *keys*."""
        if not keys:
            return {}
        async with self._session() as session:
            result = await session.execute(select(KVEntry).where(KVEntry.key.in_(keys)))
            return {entry.key: entry.value for entry in result.scalars()}

    async def set(self, key: str, value: Any) -> None:
        """Insert or replace the value under *key*."""
        await self.set_many({key: value})

    async def set_many(self, values: dict[str, Any]) -> None:
        """Insert or replace several values in one transaction."""
        async with self._session() as session:
            for key, value in values.items():
                await session.merge(KVEntry(key=key, value=value))
            await session.commit()

    async def delete(self, key: str) -> None:
        """Remove *key* if present."""
        async with self._session() as session:
            await session.execute(delete(KVEntry).where(KVEntry.key == key))
            await session.commit()
