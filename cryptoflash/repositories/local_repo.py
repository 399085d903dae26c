"""Локальные ключи: значение — произвольный JSON."""

from __future__ import annotations

from typing import Any

from sqlalchemy.orm.attributes import flag_modified
from sqlmodel.ext.asyncio.session import AsyncSession

from cryptoflash.models import LocalEntry


async def get_local_value(session: AsyncSession, key: str, default: Any = None) -> Any:
    entry = await session.get(LocalEntry, key)
    if entry is None or entry.value is None:
        return default
    return entry.value


async def set_local_value(session: AsyncSession, key: str, value: Any) -> LocalEntry:
    entry = await session.get(LocalEntry, key)
    if entry is None:
        entry = LocalEntry(key=key, value=value)
    else:
        entry.value = value
        entry.touch()
        flag_modified(entry, "value")
    session.add(entry)
    await session.commit()
    await session.refresh(entry)
    return entry


async def delete_local_value(session: AsyncSession, key: str) -> None:
    entry = await session.get(LocalEntry, key)
    if entry is None:
        return
    await session.delete(entry)
    await session.commit()


__all__ = ["delete_local_value", "get_local_value", "set_local_value"]
