"""Вычисление Pro-статуса из двух независимых источников.

Профиль пользователя и одобренные заказы обновляются в хранилище независимо.
Каждый источник хранит своё последнее состояние, а итоговый факт
пересчитывается чистой функцией ``resolve_entitlement`` на каждом снапшоте.
Источник, который ещё ничего не прислал, считается «не Pro».
"""

from __future__ import annotations

import asyncio
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable

from loguru import logger

from config.settings import PlanSettings, get_settings
from cryptoflash.services.store import (
    DocumentSnapshot,
    DocumentStore,
    FieldFilter,
    QuerySnapshot,
    Subscription,
)
from cryptoflash.services.store import collections
from cryptoflash.utils.timeutil import parse_timestamp, utcnow
from .identity import AccountContext

DateClock = Callable[[], datetime]
FactListener = Callable[["EntitlementFact"], Awaitable[None]]


@dataclass(frozen=True, slots=True)
class EntitlementFact:
    """Итог: Pro или нет и до какого момента. Никогда не сохраняется."""

    is_pro: bool = False
    expires_at: datetime | None = None

    def is_active(self, now: datetime) -> bool:
        return self.is_pro and self.expires_at is not None and self.expires_at > now


NOT_ENTITLED = EntitlementFact()


@dataclass(frozen=True, slots=True)
class ProfileState:
    """Последний снапшот документа профиля."""

    delivered: bool = False
    is_pro_flag: bool = False
    expires_at: datetime | None = None
    plan_limit: int | None = None
    usage_count: int = 0

    @classmethod
    def from_snapshot(cls, snapshot: DocumentSnapshot) -> "ProfileState":
        data = snapshot.data or {}
        return cls(
            delivered=True,
            # Только настоящий True: строки и единицы из старых записей не считаются
            is_pro_flag=data.get("isPro") is True,
            expires_at=parse_timestamp(data.get("proExpiresAt")),
            plan_limit=_to_int(data.get("planLimit")),
            usage_count=_to_int(data.get("usageCount")) or 0,
        )

    def is_pro(self, now: datetime) -> bool:
        return self.is_pro_flag and self.expires_at is not None and self.expires_at > now


@dataclass(frozen=True, slots=True)
class OrdersState:
    """Максимальный срок среди одобренных заказов."""

    delivered: bool = False
    max_expires_at: datetime | None = None
    orders_count: int = 0

    @classmethod
    def from_snapshot(cls, snapshot: QuerySnapshot) -> "OrdersState":
        expiries = [
            expires
            for doc in snapshot
            if (expires := parse_timestamp((doc.data or {}).get("expiresAt"))) is not None
        ]
        return cls(
            delivered=True,
            max_expires_at=max(expiries) if expiries else None,
            orders_count=len(snapshot),
        )

    def is_pro(self, now: datetime) -> bool:
        return self.max_expires_at is not None and self.max_expires_at > now


def resolve_entitlement(
    profile: ProfileState,
    orders: OrdersState,
    now: datetime,
) -> EntitlementFact:
    """Профиль в приоритете, затем заказы, иначе «не Pro»."""

    if profile.is_pro(now):
        return EntitlementFact(is_pro=True, expires_at=profile.expires_at)
    if orders.is_pro(now):
        return EntitlementFact(is_pro=True, expires_at=orders.max_expires_at)
    return NOT_ENTITLED


def remaining_days(expires_at: datetime | None, now: datetime) -> int | None:
    """Сколько суток осталось (округление вверх, не меньше нуля)."""

    if expires_at is None:
        return None
    return max(math.ceil((expires_at - now) / timedelta(days=1)), 0)


class EntitlementResolver:
    """Подписывается на профиль и заказы и держит актуальный EntitlementFact."""

    def __init__(
        self,
        account: AccountContext,
        store: DocumentStore,
        *,
        plans: PlanSettings | None = None,
        clock: DateClock = utcnow,
    ) -> None:
        self._account = account
        self._store = store
        self._plans = plans or get_settings().plans
        self._clock = clock
        self._profile = ProfileState()
        self._orders = OrdersState()
        self._fact = NOT_ENTITLED
        self._remaining_days: int | None = None
        self._loading = True
        self._profile_sub: Subscription[DocumentSnapshot] | None = None
        self._orders_sub: Subscription[QuerySnapshot] | None = None
        self._listeners: set[FactListener] = set()
        self._closed = False

    @property
    def profile(self) -> ProfileState:
        return self._profile

    @property
    def orders(self) -> OrdersState:
        return self._orders

    @property
    def loading(self) -> bool:
        return self._loading

    @property
    def fact(self) -> EntitlementFact:
        # Истёкший срок схлопывается в «не Pro» даже без нового снапшота
        if self._fact.is_pro and not self._fact.is_active(self._clock()):
            return NOT_ENTITLED
        return self._fact

    @property
    def is_pro(self) -> bool:
        return self.fact.is_pro

    @property
    def remaining_days(self) -> int | None:
        if self.fact.expires_at is None:
            return None
        return self._remaining_days

    def subscribe(self, listener: FactListener) -> None:
        self._listeners.add(listener)

    def unsubscribe(self, listener: FactListener) -> None:
        self._listeners.discard(listener)

    async def start(self) -> None:
        if self._profile_sub is not None or self._closed:
            return
        self._profile_sub = self._store.watch_document(
            collections.USERS,
            self._account.account_id,
            self._on_profile,
            self._error_handler("profile"),
        )
        email = self._account.order_email
        if email is None:
            # Без email заказы найти нельзя: источник сразу «пустой»
            self._orders = OrdersState(delivered=True)
        else:
            self._orders_sub = self._store.watch_query(
                collections.ORDERS,
                [
                    FieldFilter("email", email),
                    FieldFilter("status", collections.ORDER_STATUS_APPROVED),
                ],
                self._on_orders,
                self._error_handler("orders"),
            )
        logger.info(
            "EntitlementResolver запущен для {account}",
            account=self._account.account_id,
        )

    async def close(self) -> None:
        """Отменяет обе подписки разом; поздние снапшоты игнорируются."""

        self._closed = True
        for sub in (self._profile_sub, self._orders_sub):
            if sub is not None:
                sub.cancel()
        self._profile_sub = None
        self._orders_sub = None
        self._listeners.clear()

    @property
    def max_holdings(self) -> int | None:
        """Лимит позиций; None для Pro."""

        return None if self.is_pro else self._plans.free_max_holdings

    @property
    def max_active_alerts(self) -> int | None:
        return None if self.is_pro else self._plans.free_max_active_alerts

    def can_add_holding(self, current_count: int) -> bool:
        return self.is_pro or current_count < self._plans.free_max_holdings

    def can_add_alert(self, active_count: int) -> bool:
        return self.is_pro or active_count < self._plans.free_max_active_alerts

    def can_use_feature(self) -> bool:
        if self.is_pro:
            return True
        limit = self._profile.plan_limit
        if limit is None:
            return True
        return self._profile.usage_count < limit

    async def _on_profile(self, snapshot: DocumentSnapshot) -> None:
        if self._closed:
            return
        self._profile = ProfileState.from_snapshot(snapshot)
        await self._publish()

    async def _on_orders(self, snapshot: QuerySnapshot) -> None:
        if self._closed:
            return
        self._orders = OrdersState.from_snapshot(snapshot)
        await self._publish()

    def _error_handler(self, source: str) -> Callable[[Exception], Awaitable[None]]:
        async def handler(exc: Exception) -> None:
            if self._closed:
                return
            logger.error(
                "Подписка {source} для {account} упала: {error}",
                source=source,
                account=self._account.account_id,
                error=exc,
            )
            self._loading = False

        return handler

    async def _publish(self) -> None:
        now = self._clock()
        fact = resolve_entitlement(self._profile, self._orders, now)
        changed = fact != self._fact
        self._remaining_days = remaining_days(fact.expires_at, now)
        self._fact = fact
        self._loading = not (self._profile.delivered and self._orders.delivered)
        if changed:
            logger.info(
                "Pro-статус {account}: is_pro={is_pro} до {expires}",
                account=self._account.account_id,
                is_pro=fact.is_pro,
                expires=fact.expires_at,
            )
        await self._emit(fact)

    async def _emit(self, fact: EntitlementFact) -> None:
        if not self._listeners:
            return
        results = await asyncio.gather(
            *(listener(fact) for listener in list(self._listeners)),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, Exception):
                logger.error("Слушатель Pro-статуса упал: {error}", error=result)


def _to_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


__all__ = [
    "EntitlementFact",
    "EntitlementResolver",
    "NOT_ENTITLED",
    "OrdersState",
    "ProfileState",
    "remaining_days",
    "resolve_entitlement",
]
