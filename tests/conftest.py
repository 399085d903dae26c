"""Общие фикстуры: фейковые часы, котировки, in-memory хранилища."""

from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Iterable

import pytest
import pytest_asyncio

from config.settings import AppSettings
from cryptoflash.db import create_engine, create_session_maker, init_db
from cryptoflash.services.account import AccountContext
from cryptoflash.services.local_store import LocalStore
from cryptoflash.services.market import MarketDataHTTPError, Quote, QuoteNotFoundError
from cryptoflash.services.store import MemoryDocumentStore

T0 = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Часы для TtlCache (epoch-секунды)."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeDateClock:
    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class RecordingSleep:
    """Подмена asyncio.sleep: запоминает паузы и сразу возвращает управление."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.calls.append(delay)


def make_quote(coin_id: str, price: str | int, change: str = "0", name: str | None = None) -> Quote:
    return Quote(
        id=coin_id,
        name=name or coin_id.title(),
        symbol=coin_id[:3],
        price=Decimal(str(price)),
        change_24h_percent=Decimal(change),
    )


class FakeMarket:
    """Минимальная замена MarketDataClient для портфеля и алертов."""

    def __init__(self, quotes: Iterable[Quote] = ()) -> None:
        self.quotes: dict[str, Quote] = {quote.id: quote for quote in quotes}
        self.failing: set[str] = set()
        self.calls: list[str] = []

    def set_price(self, coin_id: str, price: str | int, change: str = "0") -> None:
        current = self.quotes[coin_id]
        self.quotes[coin_id] = replace(current, price=Decimal(str(price)), change_24h_percent=Decimal(change))

    async def fetch_quote(self, coin_id: str) -> Quote:
        self.calls.append(coin_id)
        if coin_id in self.failing:
            raise MarketDataHTTPError(503, "Service Unavailable")
        try:
            return self.quotes[coin_id]
        except KeyError:
            raise QuoteNotFoundError(coin_id) from None

    async def fetch_quotes(self, ids: Iterable[str]) -> list[Quote]:
        ids = list(ids)
        self.calls.extend(ids)
        return [self.quotes[i] for i in ids if i in self.quotes and i not in self.failing]


@pytest.fixture
def settings() -> AppSettings:
    return AppSettings()


@pytest.fixture
def account() -> AccountContext:
    return AccountContext(account_id="alice@example.com", email="alice@example.com")


@pytest.fixture
def store() -> MemoryDocumentStore:
    return MemoryDocumentStore()


@pytest.fixture
def date_clock() -> FakeDateClock:
    return FakeDateClock()


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def market() -> FakeMarket:
    return FakeMarket(
        [
            make_quote("bitcoin", 100, "2", name="Bitcoin"),
            make_quote("ethereum", 10, "-1", name="Ethereum"),
        ]
    )


@pytest_asyncio.fixture
async def session_maker():
    engine = create_engine("sqlite+aiosqlite:///:memory:")
    await init_db(engine)
    yield create_session_maker(engine)
    await engine.dispose()


@pytest.fixture
def local_store(session_maker) -> LocalStore:
    return LocalStore(session_maker)


class GatedSleep:
    """Пропускает первые ``limit`` пауз, дальше зависает."""

    def __init__(self, limit: int) -> None:
        self.limit = limit
        self.calls: list[float] = []
        self.reached = asyncio.Event()

    async def __call__(self, delay: float) -> None:
        self.calls.append(delay)
        if len(self.calls) > self.limit:
            self.reached.set()
            await asyncio.Event().wait()


async def eventually(predicate, timeout: float = 2.0, step: float = 0.01) -> None:
    """Ждёт, пока ``predicate()`` станет истинным (для фоновых циклов на реальном времени)."""

    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("условие не выполнилось за отведённое время")
        await asyncio.sleep(step)


@pytest_asyncio.fixture
async def file_session_maker(tmp_path):
    """Файловая SQLite: у каждой сессии своё соединение, как у разных процессов."""

    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'cryptoflash.db'}")
    await init_db(engine)
    yield create_session_maker(engine)
    await engine.dispose()
