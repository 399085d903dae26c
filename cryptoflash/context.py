"""Сборка сервисов одной пользовательской сессии."""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Awaitable, Callable

from loguru import logger
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlmodel.ext.asyncio.session import AsyncSession

from config.settings import AppSettings, get_settings
from cryptoflash.db import get_session_maker
from cryptoflash.services.account import AccountContext, EntitlementResolver
from cryptoflash.services.alerts import AlertMonitor, AlertRepository, Notifier, create_notifier
from cryptoflash.services.local_store import LocalStore
from cryptoflash.services.market import MarketDataClient
from cryptoflash.services.portfolio import PortfolioSyncEngine
from cryptoflash.services.preferences import PreferencesService, Theme
from cryptoflash.services.store import DocumentStore, MemoryDocumentStore, SqlDocumentStore
from cryptoflash.utils.timeutil import utcnow

Sleep = Callable[[float], Awaitable[None]]


def create_document_store(
    settings: AppSettings | None = None,
    session_maker: async_sessionmaker[AsyncSession] | None = None,
) -> DocumentStore:
    """Хранилище по ``store.backend``: memory для dev и тестов, sql для общей БД."""

    cfg = (settings or get_settings()).store
    if cfg.backend == "sql":
        return SqlDocumentStore(
            session_maker or get_session_maker(),
            poll_interval=cfg.poll_interval_sec,
        )
    return MemoryDocumentStore()


class AccountSession:
    """Pro-статус, портфель и алерты одного аккаунта.

    ``start()`` запускает хранилище, открывает все подписки и циклы,
    ``close()`` закрывает их все. Если старт упал на середине, уже запущенное
    закрывается. Общее для нескольких сессий хранилище передаётся с
    ``own_store=False``: тогда его останавливает владелец.
    """

    def __init__(
        self,
        account: AccountContext,
        store: DocumentStore,
        market_client: MarketDataClient,
        local_store: LocalStore,
        settings: AppSettings | None = None,
        *,
        notifier: Notifier | None = None,
        own_store: bool = True,
        clock: Callable[[], datetime] = utcnow,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        cfg = settings or get_settings()
        self.account = account
        self.store = store
        self._own_store = own_store
        self.market = market_client
        self.entitlement = EntitlementResolver(account, store, plans=cfg.plans, clock=clock)
        self.portfolio = PortfolioSyncEngine(
            account,
            store,
            market_client,
            entitlement=self.entitlement,
            settings=cfg.portfolio,
            clock=clock,
            sleep=sleep,
        )
        self.notifier = notifier or create_notifier()
        self.alerts = AlertMonitor(
            account,
            AlertRepository(account.account_id, local_store),
            market_client,
            self.notifier,
            entitlement=self.entitlement,
            settings=cfg.alerts,
            clock=clock,
            sleep=sleep,
        )
        self.preferences = PreferencesService(account.account_id, local_store)
        self.theme: Theme | None = None
        self._started = False

    async def start(self) -> None:
        if self._started:
            return
        self._started = True
        try:
            await self.store.start()
            await self.entitlement.start()
            await self.portfolio.start()
            await self.alerts.load()
            await self.alerts.start()
            self.theme = await self.preferences.get_theme()
        except Exception:
            logger.exception("Сессия {account} не запустилась", account=self.account.account_id)
            await self.close()
            raise
        logger.info("Сессия {account} запущена", account=self.account.account_id)

    async def close(self) -> None:
        results = await asyncio.gather(
            self.alerts.stop(),
            self.portfolio.close(),
            self.entitlement.close(),
            self.notifier.close(),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, Exception):
                logger.error(
                    "Ошибка при закрытии сессии {account}: {error}",
                    account=self.account.account_id,
                    error=result,
                )
        if self._own_store:
            try:
                await self.store.close()
            except Exception as exc:  # noqa: BLE001
                logger.error(
                    "Хранилище сессии {account} не закрылось: {error}",
                    account=self.account.account_id,
                    error=exc,
                )
        self._started = False
        logger.info("Сессия {account} закрыта", account=self.account.account_id)

    async def set_theme(self, theme: str) -> Theme:
        self.theme = await self.preferences.set_theme(theme)
        return self.theme

    async def __aenter__(self) -> "AccountSession":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()


__all__ = ["AccountSession", "create_document_store"]
