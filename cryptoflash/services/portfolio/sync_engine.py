"""Синхронизация портфеля: локальный список, удалённый документ и цены.

Источник истины в памяти один: кортеж позиций аккаунта. Его меняют три
независимых цикла:

* подписка на документ ``portfolios/{account}`` заменяет список целиком;
* локальные операции меняют список и откладывают запись документа (debounce);
* цикл цен периодически обновляет текущие цены поверх актуального списка.

Пока первое чтение документа не завершилось, запись подавлена: иначе пустой
локальный список перезаписал бы сохранённый портфель.
"""

from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from typing import Any, Awaitable, Callable

from loguru import logger

from config.settings import PortfolioSettings, get_settings
from cryptoflash.services.account import AccountContext, EntitlementResolver
from cryptoflash.services.market import MarketDataClient, Quote, normalize_coin_id, to_decimal
from cryptoflash.services.store import (
    DocumentSnapshot,
    DocumentStore,
    DocumentStoreError,
    Subscription,
)
from cryptoflash.services.store import collections
from cryptoflash.utils.debounce import Debouncer
from cryptoflash.utils.timeutil import to_iso, utcnow
from .errors import HoldingNotFoundError, InvalidHoldingError, PlanLimitExceededError
from .holdings import Holding, PortfolioTotals, compute_totals

Sleep = Callable[[float], Awaitable[None]]


class PortfolioSyncEngine:
    def __init__(
        self,
        account: AccountContext,
        store: DocumentStore,
        market: MarketDataClient,
        *,
        entitlement: EntitlementResolver | None = None,
        settings: PortfolioSettings | None = None,
        clock: Callable[[], datetime] = utcnow,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        cfg = settings or get_settings().portfolio
        self._account = account
        self._store = store
        self._market = market
        self._entitlement = entitlement
        self._clock = clock
        self._sleep = sleep
        self._initial_delay = cfg.refresh_initial_delay_sec
        self._interval = cfg.refresh_interval_sec
        self._holdings: tuple[Holding, ...] = ()
        self._loaded = False
        self._closed = False
        self._lock = asyncio.Lock()
        self._subscription: Subscription[DocumentSnapshot] | None = None
        self._refresh_task: asyncio.Task[None] | None = None
        self._stop = asyncio.Event()
        self._writer = Debouncer(
            self._write_remote,
            cfg.debounce_sec,
            name=f"portfolio-write:{account.account_id}",
        )

    @property
    def holdings(self) -> tuple[Holding, ...]:
        return self._holdings

    @property
    def loaded(self) -> bool:
        """Первое чтение удалённого документа завершено."""

        return self._loaded

    @property
    def writer(self) -> Debouncer:
        return self._writer

    def get_holding(self, coin_id: str) -> Holding | None:
        normalized = normalize_coin_id(coin_id)
        for holding in self._holdings:
            if holding.id == normalized:
                return holding
        return None

    def totals(self) -> PortfolioTotals:
        return compute_totals(self._holdings)

    async def start(self, *, refresh: bool = True) -> None:
        if self._closed:
            raise RuntimeError("PortfolioSyncEngine уже закрыт")
        if self._subscription is None:
            self._subscription = self._store.watch_document(
                collections.PORTFOLIOS,
                self._account.account_id,
                self._on_remote,
                self._on_remote_error,
            )
        if refresh and (self._refresh_task is None or self._refresh_task.done()):
            self._stop.clear()
            self._refresh_task = asyncio.create_task(
                self._refresh_loop(),
                name=f"portfolio-prices:{self._account.account_id}",
            )
        logger.info("PortfolioSyncEngine запущен для {account}", account=self._account.account_id)

    async def close(self) -> None:
        """Отменяет подписку, цикл цен и ожидающую запись."""

        self._closed = True
        self._stop.set()
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None
        self._writer.cancel()
        if self._refresh_task is not None:
            self._refresh_task.cancel()
            try:
                await self._refresh_task
            except asyncio.CancelledError:
                pass
            self._refresh_task = None

    async def add_holding(
        self,
        coin_id: str,
        quantity: Decimal | int | float | str,
        purchase_price: Decimal | int | float | str,
    ) -> Holding:
        """Добавляет монету или увеличивает количество уже имеющейся.

        При слиянии цена покупки не меняется. Новая монета проходит проверку
        тарифа и подтягивает название и цену через клиент рыночных данных.
        """

        normalized = normalize_coin_id(coin_id)
        if not normalized:
            raise InvalidHoldingError("Не указана монета")
        qty = _positive(quantity, "quantity")
        price = _positive(purchase_price, "purchase_price")
        async with self._lock:
            existing = self.get_holding(normalized)
            if existing is None:
                self._check_plan_limit()
                quote = await self._market.fetch_quote(normalized)
                # Пока шёл запрос, монета могла появиться из снапшота
                existing = self.get_holding(normalized)
            if existing is not None:
                result = replace(existing, quantity=existing.quantity + qty)
                self._replace_one(result)
            else:
                result = Holding(
                    id=normalized,
                    name=quote.name,
                    symbol=quote.symbol,
                    image_url=quote.image_url,
                    quantity=qty,
                    purchase_price=price,
                    current_price=quote.price,
                    change_24h_percent=quote.change_24h_percent,
                )
                self._set_holdings(self._holdings + (result,))
        logger.info(
            "Позиция {coin} в портфеле {account}: {quantity}",
            coin=normalized,
            account=self._account.account_id,
            quantity=result.quantity,
        )
        return result

    async def edit_holding(
        self,
        coin_id: str,
        quantity: Decimal | int | float | str | None = None,
        purchase_price: Decimal | int | float | str | None = None,
    ) -> Holding:
        changes: dict[str, Decimal] = {}
        if quantity is not None:
            changes["quantity"] = _positive(quantity, "quantity")
        if purchase_price is not None:
            changes["purchase_price"] = _positive(purchase_price, "purchase_price")
        async with self._lock:
            existing = self.get_holding(coin_id)
            if existing is None:
                raise HoldingNotFoundError(f"Монеты {coin_id!r} нет в портфеле")
            if not changes:
                return existing
            result = replace(existing, **changes)
            self._replace_one(result)
        return result

    async def remove_holding(self, coin_id: str) -> bool:
        normalized = normalize_coin_id(coin_id)
        async with self._lock:
            remaining = tuple(h for h in self._holdings if h.id != normalized)
            if len(remaining) == len(self._holdings):
                return False
            self._set_holdings(remaining)
        logger.info(
            "Позиция {coin} удалена из портфеля {account}",
            coin=normalized,
            account=self._account.account_id,
        )
        return True

    async def refresh_prices(self) -> bool:
        """Один проход обновления цен. Возвращает True, если что-то изменилось."""

        ids = [holding.id for holding in self._holdings]
        if not ids:
            return False
        results = await asyncio.gather(
            *(self._market.fetch_quote(coin_id) for coin_id in ids),
            return_exceptions=True,
        )
        quotes: dict[str, Quote] = {}
        for coin_id, result in zip(ids, results):
            if isinstance(result, BaseException):
                if isinstance(result, asyncio.CancelledError):
                    raise result
                logger.warning(
                    "Цена {coin} не обновлена: {error}",
                    coin=coin_id,
                    error=result,
                )
                continue
            quotes[coin_id] = result
        # Применяем к текущему списку: правки, сделанные во время запроса, сохраняются
        changed = False
        updated: list[Holding] = []
        for holding in self._holdings:
            quote = quotes.get(holding.id)
            if quote is not None and holding.price_differs(quote):
                holding = holding.with_quote(quote)
                changed = True
            updated.append(holding)
        if not changed:
            return False
        self._set_holdings(tuple(updated))
        return True

    async def flush(self) -> None:
        """Немедленно выполняет ожидающую запись."""

        await self._writer.flush()

    async def _refresh_loop(self) -> None:
        await self._sleep(self._initial_delay)
        while not self._stop.is_set():
            try:
                await self.refresh_prices()
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # noqa: BLE001
                logger.exception("Цикл цен портфеля упал: {error}", error=exc)
            await self._sleep(self._interval)

    async def _on_remote(self, snapshot: DocumentSnapshot) -> None:
        if self._closed:
            return
        raw = (snapshot.data or {}).get("holdings") or []
        self._holdings = tuple(_parse_holdings(raw, self._account.account_id))
        if not self._loaded:
            logger.info(
                "Портфель {account} загружен: {count} позиций",
                account=self._account.account_id,
                count=len(self._holdings),
            )
        self._loaded = True

    async def _on_remote_error(self, exc: Exception) -> None:
        logger.error(
            "Подписка на портфель {account} упала: {error}",
            account=self._account.account_id,
            error=exc,
        )

    async def _write_remote(self) -> None:
        if not self._loaded or self._closed:
            return
        payload: dict[str, Any] = {
            "holdings": [holding.to_document() for holding in self._holdings],
            "updatedAt": to_iso(self._clock()),
        }
        try:
            await self._store.set(collections.PORTFOLIOS, self._account.account_id, payload)
        except DocumentStoreError as exc:
            logger.error(
                "Запись портфеля {account} не удалась: {error}",
                account=self._account.account_id,
                error=exc,
            )
            return
        logger.debug(
            "Портфель {account} сохранён ({count} позиций)",
            account=self._account.account_id,
            count=len(self._holdings),
        )

    def _set_holdings(self, holdings: tuple[Holding, ...]) -> None:
        self._holdings = holdings
        if self._loaded:
            self._writer.schedule()
        else:
            logger.debug(
                "Портфель {account} ещё не загружен, запись пропущена",
                account=self._account.account_id,
            )

    def _replace_one(self, holding: Holding) -> None:
        self._set_holdings(
            tuple(holding if h.id == holding.id else h for h in self._holdings)
        )

    def _check_plan_limit(self) -> None:
        if self._entitlement is None:
            return
        if not self._entitlement.can_add_holding(len(self._holdings)):
            raise PlanLimitExceededError(self._entitlement.max_holdings or len(self._holdings))


def _positive(value: Any, field: str) -> Decimal:
    amount = to_decimal(value, default=Decimal("-1"))
    if amount <= 0:
        raise InvalidHoldingError(f"{field} должно быть больше нуля, получено {value!r}")
    return amount


def _parse_holdings(raw: Any, account_id: str) -> list[Holding]:
    holdings: list[Holding] = []
    if not isinstance(raw, list):
        logger.warning("Портфель {account}: holdings не список", account=account_id)
        return holdings
    seen: set[str] = set()
    for item in raw:
        if not isinstance(item, dict):
            continue
        try:
            holding = Holding.from_document(item)
        except ValueError as exc:
            logger.warning("Портфель {account}: битая позиция {error}", account=account_id, error=exc)
            continue
        if holding.id in seen:
            continue
        seen.add(holding.id)
        holdings.append(holding)
    return holdings


__all__ = ["PortfolioSyncEngine"]
