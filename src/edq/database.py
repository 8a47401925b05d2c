"""Async SQLAlchemy store handle.

The ``Store`` owns the engine and session factory. It is constructed once
at process start, passed to whoever needs it and closed at shutdown.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from edq.config import Settings
from edq.db import models as _models  # noqa: F401  registers tables on Base.metadata
from edq.db.base import Base
from edq.errors import StoreUnavailable


def _enable_sqlite_foreign_keys(dbapi_connection: Any, _record: Any) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class Store:
    """Database engine + session factory with an explicit lifecycle."""

    def __init__(
        self,
        url: str,
        *,
        pool_size: int = 20,
        max_overflow: int = 10,
        echo: bool = False,
    ) -> None:
        self.url = url
        self.pool_size = pool_size
        self.max_overflow = max_overflow
        self.echo = echo
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> Store:
        return cls(
            settings.database_url,
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
        )

    @property
    def backend(self) -> str:
        return make_url(self.url).get_backend_name()

    async def start(self) -> None:
        """Create the engine and session factory."""
        if self._engine is not None:
            return

        kwargs: dict[str, Any] = {"echo": self.echo}
        if self.backend == "postgresql":
            kwargs.update(
                pool_size=self.pool_size,
                max_overflow=self.max_overflow,
                pool_pre_ping=True,
                connect_args={"statement_cache_size": 0},
            )

        self._engine = create_async_engine(self.url, **kwargs)
        if self.backend == "sqlite":
            event.listen(self._engine.sync_engine, "connect", _enable_sqlite_foreign_keys)

        self._session_factory = async_sessionmaker(
            self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    async def close(self) -> None:
        """Dispose of the engine."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            msg = "Store not started. Call start() first."
            raise RuntimeError(msg)
        return self._engine

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Yield a session; connectivity failures surface as StoreUnavailable."""
        if self._session_factory is None:
            msg = "Store not started. Call start() first."
            raise RuntimeError(msg)
        try:
            async with self._session_factory() as session:
                yield session
        except (OperationalError, InterfaceError) as exc:
            raise StoreUnavailable("Database unavailable", reason=str(exc.orig)) from exc
        except OSError as exc:
            raise StoreUnavailable("Database unreachable", reason=str(exc)) from exc

    async def create_schema(self) -> None:
        """Create all tables. For development and tests; production runs migrations."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def drop_schema(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
