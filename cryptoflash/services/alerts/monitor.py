"""Проверка ценовых алертов.

Каждый алерт срабатывает не больше одного раза. Перед отправкой уведомления
алерт «захватывается» под локом, поэтому параллельные проверки одной пачки
котировок не отправят его дважды. Если доставка упала, алерт остаётся
активным и будет проверен на следующем цикле.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from decimal import Decimal
from typing import Awaitable, Callable, Iterable

from loguru import logger

from config.settings import AlertSettings, get_settings
from cryptoflash.services.account import AccountContext, EntitlementResolver
from cryptoflash.services.market import MarketDataClient, Quote, normalize_coin_id, to_decimal
from cryptoflash.utils.timeutil import utcnow
from .errors import AlertLimitExceededError, InvalidAlertError
from .models import AlertDirection, PriceAlert
from .notifiers import Notifier
from .repository import AlertRepository

Sleep = Callable[[float], Awaitable[None]]


class AlertMonitor:
    def __init__(
        self,
        account: AccountContext,
        repository: AlertRepository,
        market: MarketDataClient,
        notifier: Notifier,
        *,
        entitlement: EntitlementResolver | None = None,
        settings: AlertSettings | None = None,
        clock: Callable[[], datetime] = utcnow,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        cfg = settings or get_settings().alerts
        self._account = account
        self._repository = repository
        self._market = market
        self._notifier = notifier
        self._entitlement = entitlement
        self._interval = cfg.interval_sec
        self._clock = clock
        self._sleep = sleep
        self._alerts: dict[str, PriceAlert] = {}
        self._in_flight: set[str] = set()
        self._lock = asyncio.Lock()
        self._task: asyncio.Task[None] | None = None
        self._stop = asyncio.Event()

    async def load(self) -> None:
        alerts = await self._repository.load()
        async with self._lock:
            self._alerts = {alert.id: alert for alert in alerts}
        logger.info(
            "Загружено {count} алертов для {account}",
            count=len(alerts),
            account=self._account.account_id,
        )

    def list_alerts(self, active_only: bool = False) -> list[PriceAlert]:
        alerts = list(self._alerts.values())
        if active_only:
            alerts = [alert for alert in alerts if alert.is_active]
        return alerts

    def active_coin_ids(self) -> set[str]:
        return {alert.coin_id for alert in self._alerts.values() if alert.is_active}

    async def add_alert(
        self,
        coin_id: str,
        target_price: Decimal | int | float | str,
        direction: AlertDirection | str,
        notify_address: str,
        *,
        coin_name: str = "",
        coin_symbol: str = "",
    ) -> PriceAlert:
        normalized = normalize_coin_id(coin_id)
        if not normalized:
            raise InvalidAlertError("Не указана монета")
        target = to_decimal(target_price, default=Decimal("-1"))
        if target <= 0:
            raise InvalidAlertError(f"Целевая цена должна быть больше нуля: {target_price!r}")
        try:
            alert_direction = AlertDirection(direction)
        except ValueError as exc:
            raise InvalidAlertError(f"Неизвестное направление: {direction!r}") from exc
        address = (notify_address or "").strip()
        if not address:
            raise InvalidAlertError("Не указан адрес для уведомления")

        async with self._lock:
            active = sum(1 for alert in self._alerts.values() if alert.is_active)
            if self._entitlement is not None and not self._entitlement.can_add_alert(active):
                raise AlertLimitExceededError(self._entitlement.max_active_alerts or active)
            now = self._clock()
            alert = PriceAlert(
                id=self._new_id(normalized, now),
                coin_id=normalized,
                coin_name=coin_name,
                coin_symbol=coin_symbol,
                target_price=target,
                direction=alert_direction,
                notify_address=address,
                created_at=now,
            )
            self._alerts[alert.id] = alert
            await self._persist()
        logger.info(
            "Алерт {alert_id}: {coin} {direction} {target}",
            alert_id=alert.id,
            coin=normalized,
            direction=alert_direction.value,
            target=target,
        )
        return alert

    async def remove_alert(self, alert_id: str) -> bool:
        async with self._lock:
            if self._alerts.pop(alert_id, None) is None:
                return False
            await self._persist()
        return True

    async def evaluate(self, quotes: Iterable[Quote]) -> list[PriceAlert]:
        """Проверяет пачку котировок и возвращает сработавшие алерты."""

        prices = {quote.id: quote for quote in quotes}
        async with self._lock:
            claimed = [
                alert
                for alert in self._alerts.values()
                if alert.id not in self._in_flight
                and alert.coin_id in prices
                and alert.should_fire(prices[alert.coin_id].price)
            ]
            self._in_flight.update(alert.id for alert in claimed)

        fired: list[PriceAlert] = []
        try:
            for alert in claimed:
                quote = prices[alert.coin_id]
                try:
                    await self._notifier.send(alert, quote)
                except asyncio.CancelledError:
                    raise
                except Exception as exc:  # noqa: BLE001
                    logger.warning(
                        "Уведомление по алерту {alert_id} не доставлено, повтор на следующем цикле: {error}",
                        alert_id=alert.id,
                        error=exc,
                    )
                    continue
                result = await self._mark_fired(alert.id, quote.price)
                if result is not None:
                    fired.append(result)
        finally:
            async with self._lock:
                self._in_flight.difference_update(alert.id for alert in claimed)
        return fired

    async def check_once(self) -> list[PriceAlert]:
        """Загружает котировки монет активных алертов и проверяет их."""

        coin_ids = sorted(self.active_coin_ids())
        if not coin_ids:
            return []
        quotes = await self._market.fetch_quotes(coin_ids)
        return await self.evaluate(quotes)

    async def start(self) -> None:
        if self._task and not self._task.done():
            return
        self._stop.clear()
        self._task = asyncio.create_task(
            self._run_loop(),
            name=f"alert-monitor:{self._account.account_id}",
        )
        logger.info("AlertMonitor запущен для {account}", account=self._account.account_id)

    async def stop(self) -> None:
        self._stop.set()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _run_loop(self) -> None:
        while not self._stop.is_set():
            try:
                await self.check_once()
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # noqa: BLE001
                logger.exception("Цикл алертов упал: {error}", error=exc)
            await self._sleep(self._interval)

    async def _mark_fired(self, alert_id: str, price: Decimal) -> PriceAlert | None:
        async with self._lock:
            current = self._alerts.get(alert_id)
            # Алерт могли удалить, пока шла отправка
            if current is None or not current.is_active:
                return None
            updated = current.deactivate(price, self._clock())
            self._alerts[alert_id] = updated
            try:
                await self._persist()
            except Exception as exc:  # noqa: BLE001
                logger.error(
                    "Сработавший алерт {alert_id} не сохранён: {error}",
                    alert_id=alert_id,
                    error=exc,
                )
        logger.info(
            "Алерт {alert_id} сработал по цене {price}",
            alert_id=alert_id,
            price=price,
        )
        return updated

    async def _persist(self) -> None:
        await self._repository.save(self._alerts.values())

    def _new_id(self, coin_id: str, now: datetime) -> str:
        base = f"{coin_id}-{int(now.timestamp() * 1000)}"
        candidate = base
        suffix = 1
        while candidate in self._alerts:
            candidate = f"{base}-{suffix}"
            suffix += 1
        return candidate


__all__ = ["AlertMonitor"]
