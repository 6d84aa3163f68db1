"""Async SQLModel engine, session factory and the FastAPI session dependency."""

from __future__ import annotations

from pathlib import Path
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from config.settings import DatabaseSettings, get_settings
from dexswipe import models  # noqa: F401  registers table metadata


def build_engine(cfg: DatabaseSettings) -> AsyncEngine:
    connect_args = {}
    if cfg.dsn.startswith("sqlite"):
        # Concurrent claimers wait on the SQLite write lock instead of failing fast.
        connect_args["timeout"] = 30
    return create_async_engine(
        cfg.dsn,
        echo=cfg.echo,
        poolclass=NullPool,
        connect_args=connect_args,
    )


def build_session_maker(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=bind, class_=AsyncSession, expire_on_commit=False)


settings = get_settings()
engine = build_engine(settings.database)
session_maker: async_sessionmaker[AsyncSession] = build_session_maker(engine)


async def init_db(bind: AsyncEngine | None = None) -> None:
    """Create every table (the schema is small enough to live without migrations)."""

    bind = bind or engine
    url = bind.url
    if url.drivername.startswith("sqlite") and url.database and url.database != ":memory:":
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)
    async with bind.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


def get_session_maker() -> async_sessionmaker[AsyncSession]:
    return session_maker


async def get_db_session() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency: one session per request."""

    async with session_maker() as session:
        yield session


__all__ = [
    "build_engine",
    "build_session_maker",
    "engine",
    "get_db_session",
    "get_session_maker",
    "init_db",
    "session_maker",
]
