"""Async SQLAlchemy engine and session management."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import AsyncIterator

from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from ..errors import StorageError
from .tables import Base

logger = logging.getLogger(__name__)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to timestamps that the driver returned naive."""

    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Database:
    """Owns the async engine and hands out transactional sessions."""

    def __init__(self, url: str, *, echo: bool = False) -> None:
        self._url = make_url(url)
        engine_kwargs: dict[str, object] = {"echo": echo}
        if self._url.get_backend_name() == "sqlite":
            # file-backed sqlite gains nothing from pooling aiosqlite threads
            engine_kwargs["poolclass"] = NullPool
        else:
            engine_kwargs["pool_pre_ping"] = True
        self._engine = create_async_engine(self._url, **engine_kwargs)
        self._sessions = async_sessionmaker(self._engine, expire_on_commit=False)

    @property
    def url(self) -> str:
        """Connection URL with any password masked."""

        return self._url.render_as_string(hide_password=True)

    @property
    def engine(self):
        return self._engine

    def _ensure_sqlite_directory(self) -> None:
        if self._url.get_backend_name() != "sqlite":
            return
        database = self._url.database
        if not database or database == ":memory:":
            return
        Path(database).expanduser().parent.mkdir(parents=True, exist_ok=True)

    async def initialize(self) -> None:
        """Create tables and indexes if they do not exist yet."""

        self._ensure_sqlite_directory()
        try:
            async with self._engine.begin() as connection:
                await connection.run_sync(Base.metadata.create_all)
        except SQLAlchemyError as exc:
            raise StorageError("initialize schema", exc) from exc
        logger.debug("Database schema ready", extra={"url": self.url})

    @asynccontextmanager
    async def session(self, operation: str) -> AsyncIterator[AsyncSession]:
        """Yield a session inside a transaction, wrapping driver errors.

        The transaction commits when the block exits cleanly and rolls back
        on any exception.
        """

        try:
            async with self._sessions() as session:
                async with session.begin():
                    yield session
        except SQLAlchemyError as exc:
            raise StorageError(operation, exc) from exc

    async def dispose(self) -> None:
        await self._engine.dispose()


__all__ = ["Database", "as_utc"]
