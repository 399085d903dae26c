"""SQLModel engine и фабрика сессий для sql-хранилища и локальных ключей."""

from __future__ import annotations

from typing import Any

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool, StaticPool
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from config.settings import get_settings
from cryptoflash import models  # noqa: F401  импортируем модели для регистрации метаданных

_engine: AsyncEngine | None = None
_session_maker: async_sessionmaker[AsyncSession] | None = None


def create_engine(dsn: str, echo: bool = False) -> AsyncEngine:
    """In-memory SQLite живёт в одном соединении, остальное — без пула."""

    kwargs: dict[str, Any] = {"echo": echo}
    if ":memory:" in dsn or dsn.rstrip("/").endswith("sqlite+aiosqlite:"):
        kwargs["poolclass"] = StaticPool
        kwargs["connect_args"] = {"check_same_thread": False}
    else:
        kwargs["poolclass"] = NullPool
    return create_async_engine(dsn, **kwargs)


def create_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


def get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        cfg = get_settings().database
        _engine = create_engine(cfg.dsn, cfg.echo)
    return _engine


def get_session_maker() -> async_sessionmaker[AsyncSession]:
    global _session_maker
    if _session_maker is None:
        _session_maker = create_session_maker(get_engine())
    return _session_maker


async def init_db(engine: AsyncEngine | None = None) -> None:
    """Создание таблиц (миграций пока нет)."""

    async with (engine or get_engine()).begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


__all__ = [
    "create_engine",
    "create_session_maker",
    "get_engine",
    "get_session_maker",
    "init_db",
]
