from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from ..models import Base
from ..obs import add_query_logger

# SQLite has no row locks. Writers are serialised by opening every transaction
# with BEGIN IMMEDIATE, which takes the database write lock up front; a second
# connection waits (up to ``timeout`` seconds) instead of reading stale stock.


def create_engine(url: str, *, busy_timeout: float = 30.0) -> AsyncEngine:
    """Return an async engine for ``url`` with POS transaction semantics."""

    connect_args = {"timeout": busy_timeout} if url.startswith("sqlite") else {}
    engine = create_async_engine(url, future=True, connect_args=connect_args)
    add_query_logger(engine, engine.url.database or "memory")

    if engine.dialect.name == "sqlite":

        @event.listens_for(engine.sync_engine, "connect")
        def _disable_pysqlite_transactions(dbapi_connection, connection_record):
            # let SQLAlchemy emit BEGIN itself
            dbapi_connection.isolation_level = None

        @event.listens_for(engine.sync_engine, "begin")
        def _begin_immediate(conn):
            conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


def create_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


async def init_models(engine: AsyncEngine) -> None:
    """Create every table that does not exist yet."""

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@asynccontextmanager
async def transaction(
    sessionmaker: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Yield a session inside one transaction.

    The transaction commits when the block exits cleanly and rolls back on any
    exception, which is then re-raised.
    """
    async with sessionmaker() as session:
        async with session.begin():
            yield session


def sqlite_path(engine: AsyncEngine) -> str | None:
    """Return the database file behind ``engine`` or ``None`` for memory."""

    if engine.dialect.name != "sqlite":
        return None
    database = engine.url.database
    if not database or database == ":memory:":
        return None
    return database


__all__ = [
    "create_engine",
    "create_sessionmaker",
    "init_models",
    "transaction",
    "sqlite_path",
]
