"""Клиент рыночных данных с кешем ответов и ограниченным ретраем.

API публичный и жёстко лимитирован, поэтому каждый GET сначала ищется в
TTL-кеше процесса (ключ — нормализованный URL), а 5xx/429 повторяются
фиксированное число раз с фиксированной паузой.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Callable, Iterable
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import aiohttp
from loguru import logger

from config.settings import get_settings
from cryptoflash.utils.cache import Clock, TtlCache
from .quotes import (
    NftCollection,
    Quote,
    SearchResult,
    merge_price_and_markets,
    normalize_coin_id,
    parse_collection,
    parse_market_row,
    parse_search,
)

Sleep = Callable[[float], Awaitable[None]]


class MarketDataError(RuntimeError):
    """Базовое исключение слоя рыночных данных."""

    status: int | None = None


class MarketDataHTTPError(MarketDataError):
    """API ответил статусом вне 2xx."""

    def __init__(self, status: int, reason: str | None = None) -> None:
        super().__init__(f"HTTP {status}: {reason or ''}".rstrip(": "))
        self.status = status
        self.reason = reason

    @property
    def retryable(self) -> bool:
        return self.status >= 500 or self.status == 429


class MarketDataTransportError(MarketDataError):
    """Сеть или разбор ответа упали без HTTP-статуса."""


class QuoteNotFoundError(MarketDataError):
    """Монета не найдена в ответе API."""


def normalize_url(url: str) -> str:
    """Ключ кеша: схема и хост в нижнем регистре, параметры отсортированы."""

    parts = urlsplit(url.strip())
    query = sorted(parse_qsl(parts.query, keep_blank_values=True))
    return urlunsplit(
        (
            parts.scheme.lower(),
            parts.netloc.lower(),
            parts.path.rstrip("/") or "/",
            urlencode(query, safe=","),
            "",
        )
    )


class MarketDataClient:
    """Кеширующий и ретраящий клиент поверх aiohttp."""

    def __init__(
        self,
        *,
        base_url: str | None = None,
        session: aiohttp.ClientSession | None = None,
        cache: TtlCache | None = None,
        max_retries: int | None = None,
        retry_delay: float | None = None,
        timeout: float | None = None,
        clock: Clock = time.time,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        settings = get_settings()
        cfg = settings.market_data
        self._base_url = (base_url or str(cfg.base_url)).rstrip("/")
        self._session = session
        self._owns_session = session is None
        self._cache = cache or TtlCache(
            ttl=cfg.cache_ttl_seconds,
            sweep_ttl=settings.cache.sweep_ttl_seconds,
            clock=clock,
        )
        self._max_retries = cfg.max_retries if max_retries is None else max_retries
        self._retry_delay = cfg.retry_delay_sec if retry_delay is None else retry_delay
        self._timeout = timeout or cfg.request_timeout
        self._sleep = sleep

    @property
    def base_url(self) -> str:
        return self._base_url

    async def start(self) -> None:
        await self._ensure_session()

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()

    async def fetch(self, url: str) -> Any:
        """GET с кешем: свежая запись отдаётся без сетевого запроса."""

        key = normalize_url(url)
        cached = await self._cache.get(key)
        if cached is not None:
            logger.debug("MarketData ответ из кеша: {url}", url=key)
            return cached.value
        data = await self._fetch_with_retry(url)
        await self._cache.set(key, data)
        return data

    async def fetch_top_quotes(self, limit: int = 50) -> list[Quote]:
        url = self._build_url(
            "/coins/markets",
            vs_currency="usd",
            order="market_cap_desc",
            per_page=limit,
            page=1,
            sparkline="false",
            price_change_percentage="24h",
        )
        data = await self.fetch(url)
        return [parse_market_row(row) for row in data or []]

    async def fetch_quotes(self, ids: Iterable[str]) -> list[Quote]:
        """Котировки по списку монет (цены из simple/price, метаданные из markets)."""

        coin_ids = list(dict.fromkeys(normalize_coin_id(i) for i in ids if i and i.strip()))
        if not coin_ids:
            return []
        joined = ",".join(coin_ids)
        prices = await self.fetch(
            self._build_url(
                "/simple/price",
                ids=joined,
                vs_currencies="usd",
                include_24hr_change="true",
                include_market_cap="true",
            )
        )
        markets = await self.fetch(self._build_url("/coins/markets", vs_currency="usd", ids=joined))
        return merge_price_and_markets(prices or {}, markets or [])

    async def fetch_quote(self, coin_id: str) -> Quote:
        normalized = normalize_coin_id(coin_id)
        for quote in await self.fetch_quotes([normalized]):
            if quote.id == normalized:
                return quote
        raise QuoteNotFoundError(f"Монета {normalized!r} не найдена")

    async def fetch_collection(self, collection_id: str) -> NftCollection:
        data = await self.fetch(self._build_url(f"/nfts/{normalize_coin_id(collection_id)}"))
        return parse_collection(data or {})

    async def search(self, query: str) -> list[SearchResult]:
        if not query.strip():
            return []
        data = await self.fetch(self._build_url("/search", query=query.strip()))
        return parse_search(data or {})

    async def _fetch_with_retry(self, url: str) -> Any:
        last_error: MarketDataError | None = None
        attempts = self._max_retries + 1
        for attempt in range(attempts):
            try:
                return await self._request(url)
            except MarketDataHTTPError as exc:
                if not exc.retryable:
                    raise
                last_error = exc
            if attempt < self._max_retries:
                logger.warning(
                    "Запрос к API упал (попытка {attempt}/{total}), повтор через {delay}s: {error}",
                    attempt=attempt + 1,
                    total=attempts,
                    delay=self._retry_delay,
                    error=last_error,
                )
                await self._sleep(self._retry_delay)
        if last_error is None:
            raise MarketDataTransportError(f"GET {url}: ни одной попытки не выполнено")
        raise last_error

    async def _request(self, url: str) -> Any:
        session = await self._ensure_session()
        try:
            async with session.get(url) as resp:
                if not 200 <= resp.status < 300:
                    raise MarketDataHTTPError(resp.status, resp.reason)
                return await resp.json(content_type=None)
        except MarketDataError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
            raise MarketDataTransportError(f"GET {url} не выполнен: {exc}") from exc

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._timeout)
            )
            self._owns_session = True
        return self._session

    def _build_url(self, path: str, **params: Any) -> str:
        url = f"{self._base_url}{path}"
        if params:
            url = f"{url}?{urlencode(params, safe=',')}"
        return url


_client: MarketDataClient | None = None


async def get_market_client() -> MarketDataClient:
    """Возвращает синглтон MarketDataClient."""

    global _client
    if _client is None:
        _client = MarketDataClient()
        await _client.start()
    return _client


__all__ = [
    "MarketDataClient",
    "MarketDataError",
    "MarketDataHTTPError",
    "MarketDataTransportError",
    "QuoteNotFoundError",
    "get_market_client",
    "normalize_url",
]
