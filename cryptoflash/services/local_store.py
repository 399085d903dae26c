"""Локальное key/value хранилище клиента поверх таблицы local_entries."""

from __future__ import annotations

from typing import Any

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlmodel.ext.asyncio.session import AsyncSession

from cryptoflash.db import get_session_maker
from cryptoflash.repositories import delete_local_value, get_local_value, set_local_value


class LocalStoreError(RuntimeError):
    pass


class LocalStore:
    def __init__(self, session_maker: async_sessionmaker[AsyncSession] | None = None) -> None:
        self._session_maker = session_maker or get_session_maker()

    async def get(self, key: str, default: Any = None) -> Any:
        async with self._session_maker() as session:
            return await get_local_value(session, key, default)

    async def set(self, key: str, value: Any) -> None:
        try:
            async with self._session_maker() as session:
                await set_local_value(session, key, value)
        except SQLAlchemyError as exc:
            logger.error("Локальный ключ {key} не сохранён: {error}", key=key, error=exc)
            raise LocalStoreError(f"Не удалось сохранить {key}") from exc

    async def delete(self, key: str) -> None:
        async with self._session_maker() as session:
            await delete_local_value(session, key)


__all__ = ["LocalStore", "LocalStoreError"]
