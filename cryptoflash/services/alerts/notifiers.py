"""Доставка уведомлений о сработавших алертах."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Any

import aiohttp
from loguru import logger

from config.settings import get_settings
from cryptoflash.services.market import Quote
from cryptoflash.utils.timeutil import to_iso, utcnow
from .errors import NotificationError
from .models import PriceAlert


class Notifier(ABC):
    @abstractmethod
    async def send(self, alert: PriceAlert, quote: Quote) -> None:
        """Доставляет уведомление; при неудаче бросает NotificationError."""

    async def close(self) -> None:
        return None


class LogNotifier(Notifier):
    """Пишет срабатывание в лог (dev-режим и fallback без вебхука)."""

    async def send(self, alert: PriceAlert, quote: Quote) -> None:
        logger.info(
            "Алерт {alert_id}: {coin} {direction} {target}, цена {price}, адресат {address}",
            alert_id=alert.id,
            coin=alert.coin_id,
            direction=alert.direction.value,
            target=alert.target_price,
            price=quote.price,
            address=alert.notify_address,
        )


class WebhookNotifier(Notifier):
    """POST JSON на настроенный URL; ответ вне 2xx считается ошибкой."""

    def __init__(
        self,
        url: str,
        *,
        session: aiohttp.ClientSession | None = None,
        timeout: float | None = None,
    ) -> None:
        self._url = url
        self._session = session
        self._owns_session = session is None
        self._timeout = timeout or get_settings().alerts.webhook_timeout

    async def send(self, alert: PriceAlert, quote: Quote) -> None:
        session = await self._ensure_session()
        payload = build_payload(alert, quote)
        try:
            async with session.post(self._url, json=payload) as resp:
                if not 200 <= resp.status < 300:
                    body = await resp.text()
                    raise NotificationError(
                        f"Вебхук ответил {resp.status}: {body[:200]}"
                    )
        except NotificationError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise NotificationError(f"Вебхук недоступен: {exc}") from exc
        logger.debug("Уведомление по алерту {alert_id} отправлено", alert_id=alert.id)

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._timeout)
            )
            self._owns_session = True
        return self._session


def build_payload(alert: PriceAlert, quote: Quote) -> dict[str, Any]:
    return {
        "alertId": alert.id,
        "coinId": alert.coin_id,
        "coinName": alert.coin_name or quote.name,
        "coinSymbol": alert.coin_symbol or quote.symbol,
        "alertType": alert.direction.value,
        "targetPrice": str(alert.target_price),
        "price": str(quote.price),
        "email": alert.notify_address,
        "triggeredAt": to_iso(utcnow()),
    }


def create_notifier() -> Notifier:
    """Вебхук, если URL задан в настройках, иначе лог."""

    url = get_settings().alerts.webhook_url
    if url is None:
        return LogNotifier()
    return WebhookNotifier(str(url))


__all__ = ["LogNotifier", "Notifier", "WebhookNotifier", "build_payload", "create_notifier"]
