"""Хранение списка алертов аккаунта под ключом ``alerts:{account_id}``."""

from __future__ import annotations

from typing import Iterable

from loguru import logger

from cryptoflash.services.local_store import LocalStore
from .models import PriceAlert


def alerts_key(account_id: str) -> str:
    return f"alerts:{account_id}"


class AlertRepository:
    def __init__(self, account_id: str, local_store: LocalStore) -> None:
        self._key = alerts_key(account_id)
        self._local = local_store

    async def load(self) -> list[PriceAlert]:
        raw = await self._local.get(self._key, default=[])
        if not isinstance(raw, list):
            logger.warning("{key}: ожидался список, получено {kind}", key=self._key, kind=type(raw).__name__)
            return []
        alerts: list[PriceAlert] = []
        for item in raw:
            try:
                alerts.append(PriceAlert.from_record(item))
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("{key}: пропущен битый алерт {error}", key=self._key, error=exc)
        return alerts

    async def save(self, alerts: Iterable[PriceAlert]) -> None:
        await self._local.set(self._key, [alert.to_record() for alert in alerts])


__all__ = ["AlertRepository", "alerts_key"]
