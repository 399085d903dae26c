"""Единая точка настройки aiocache и TTL-кеш ответов с внедряемыми часами."""

from __future__ import annotations

import math
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from aiocache import SimpleMemoryCache, caches
from aiocache.base import BaseCache

from config.settings import get_settings

Clock = Callable[[], float]

_configured = False


def configure_cache() -> None:
    """Регистрирует in-memory кеш процесса под алиасом из настроек."""

    global _configured
    if _configured:
        return
    cfg = get_settings().cache
    caches.set_config(
        {
            cfg.alias: {
                "cache": SimpleMemoryCache,
                "ttl": cfg.sweep_ttl_seconds,
            }
        }
    )
    _configured = True


def get_cache(alias: str | None = None) -> BaseCache:
    """Возвращает кеш по алиасу (предварительно гарантирует конфиг)."""

    configure_cache()
    return caches.get(alias or get_settings().cache.alias)


@dataclass(frozen=True, slots=True)
class CacheEntry:
    """Закешированный ответ и момент его получения (epoch-секунды)."""

    key: str
    value: Any
    fetched_at: float

    def age(self, now: float) -> float:
        return now - self.fetched_at


class TtlCache:
    """Кеш, в котором свежесть решают собственные часы, а не таймеры aiocache.

    aiocache хранит записи и выбрасывает их через ``sweep_ttl`` секунд, чтобы
    долгоживущий процесс не рос бесконечно. Запись старше ``ttl`` по часам
    ``clock`` никогда не отдаётся, даже если aiocache её ещё держит.
    """

    def __init__(
        self,
        backend: BaseCache | None = None,
        *,
        ttl: float,
        sweep_ttl: float | None = None,
        clock: Clock = time.time,
    ) -> None:
        self._backend = backend if backend is not None else get_cache()
        self._ttl = ttl
        self._sweep_ttl = max(int(math.ceil(sweep_ttl if sweep_ttl is not None else ttl * 5)), 1)
        self._clock = clock

    @property
    def ttl(self) -> float:
        return self._ttl

    async def get(self, key: str) -> CacheEntry | None:
        entry = await self._backend.get(key)
        if entry is None:
            return None
        if entry.age(self._clock()) >= self._ttl:
            await self._backend.delete(key)
            return None
        return entry

    async def set(self, key: str, value: Any) -> CacheEntry:
        entry = CacheEntry(key=key, value=value, fetched_at=self._clock())
        await self._backend.set(key, entry, ttl=self._sweep_ttl)
        return entry

    async def get_or_fetch(self, key: str, factory: Callable[[], Awaitable[Any]]) -> Any:
        """Без свежего значения вызывает factory и кладёт результат в кеш."""

        entry = await self.get(key)
        if entry is not None:
            return entry.value
        value = await factory()
        await self.set(key, value)
        return value

    async def clear(self) -> None:
        await self._backend.clear()


__all__ = ["CacheEntry", "Clock", "TtlCache", "configure_cache", "get_cache"]
