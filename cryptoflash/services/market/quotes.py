"""Типы рыночных данных и разбор ответов API."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any

_WHITESPACE = re.compile(r"\s+")


def normalize_coin_id(text: str) -> str:
    """`"Shiba Inu "` -> `"shiba-inu"`: так API ожидает идентификаторы монет."""

    return _WHITESPACE.sub("-", text.strip().lower())


def to_decimal(value: Any, default: Decimal = Decimal("0")) -> Decimal:
    """Число из JSON в Decimal без артефактов float; мусор превращается в default."""

    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, Decimal):
        return value
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return default
    if not result.is_finite():
        return default
    return result


@dataclass(frozen=True, slots=True)
class Quote:
    """Снимок котировки; при обновлении заменяется целиком."""

    id: str
    name: str
    symbol: str
    price: Decimal
    change_24h_percent: Decimal = Decimal("0")
    market_cap_usd: Decimal = Decimal("0")
    image_url: str = ""


@dataclass(frozen=True, slots=True)
class CollectionLinks:
    homepage: str = ""
    twitter: str = ""
    discord: str = ""


@dataclass(frozen=True, slots=True)
class NftCollection:
    """Статистика NFT-коллекции."""

    id: str
    name: str
    symbol: str
    image_url: str
    description: str
    floor_price_usd: Decimal
    floor_price_change_24h_percent: Decimal
    volume_24h_usd: Decimal
    unique_addresses: int
    unique_addresses_change_24h_percent: Decimal
    links: CollectionLinks = field(default_factory=CollectionLinks)


@dataclass(frozen=True, slots=True)
class SearchResult:
    id: str
    name: str
    symbol: str
    market_cap_rank: int | None
    thumb_url: str


def parse_market_row(row: dict[str, Any]) -> Quote:
    """Строка /coins/markets (топ по капитализации)."""

    return Quote(
        id=str(row.get("id", "")),
        name=str(row.get("name") or row.get("id", "")),
        symbol=str(row.get("symbol") or ""),
        price=to_decimal(row.get("current_price")),
        change_24h_percent=to_decimal(row.get("price_change_percentage_24h")),
        market_cap_usd=to_decimal(row.get("market_cap")),
        image_url=str(row.get("image") or ""),
    )


def merge_price_and_markets(
    prices: dict[str, Any],
    markets: list[dict[str, Any]],
) -> list[Quote]:
    """Склеивает /simple/price (цены) и /coins/markets (имя, тикер, картинка).

    Порядок и состав задаёт ответ markets; цена берётся из simple/price,
    а если её там нет — из строки markets.
    """

    quotes: list[Quote] = []
    for row in markets:
        coin_id = str(row.get("id", ""))
        if not coin_id:
            continue
        price_row = prices.get(coin_id) if isinstance(prices, dict) else None
        price_row = price_row if isinstance(price_row, dict) else {}
        quotes.append(
            Quote(
                id=coin_id,
                name=str(row.get("name") or coin_id),
                symbol=str(row.get("symbol") or coin_id),
                price=to_decimal(price_row.get("usd", row.get("current_price"))),
                change_24h_percent=to_decimal(
                    price_row.get("usd_24h_change", row.get("price_change_percentage_24h"))
                ),
                market_cap_usd=to_decimal(price_row.get("usd_market_cap", row.get("market_cap"))),
                image_url=str(row.get("image") or ""),
            )
        )
    return quotes


def parse_collection(data: dict[str, Any]) -> NftCollection:
    links = data.get("links") or {}
    image = data.get("image") or {}
    return NftCollection(
        id=str(data.get("id", "")),
        name=str(data.get("name") or ""),
        symbol=str(data.get("symbol") or ""),
        image_url=str(image.get("small") or "") if isinstance(image, dict) else "",
        description=str(data.get("description") or ""),
        floor_price_usd=to_decimal((data.get("floor_price") or {}).get("usd")),
        floor_price_change_24h_percent=to_decimal(
            data.get("floor_price_in_usd_24h_percentage_change")
        ),
        volume_24h_usd=to_decimal((data.get("volume_24h") or {}).get("usd")),
        unique_addresses=int(data.get("number_of_unique_addresses") or 0),
        unique_addresses_change_24h_percent=to_decimal(
            data.get("number_of_unique_addresses_24h_percentage_change")
        ),
        links=CollectionLinks(
            homepage=_first_link(links.get("homepage")),
            twitter=_first_link(links.get("twitter")),
            discord=_first_link(links.get("discord")),
        ),
    )


def parse_search(data: dict[str, Any]) -> list[SearchResult]:
    results: list[SearchResult] = []
    for coin in data.get("coins") or []:
        rank = coin.get("market_cap_rank")
        results.append(
            SearchResult(
                id=str(coin.get("id", "")),
                name=str(coin.get("name") or ""),
                symbol=str(coin.get("symbol") or ""),
                market_cap_rank=int(rank) if isinstance(rank, int) else None,
                thumb_url=str(coin.get("thumb") or ""),
            )
        )
    return results


def _first_link(value: Any) -> str:
    # API отдаёт то строку, то список ссылок
    if isinstance(value, list):
        return str(value[0]) if value else ""
    return str(value or "")


__all__ = [
    "CollectionLinks",
    "NftCollection",
    "Quote",
    "SearchResult",
    "merge_price_and_markets",
    "normalize_coin_id",
    "parse_collection",
    "parse_market_row",
    "parse_search",
    "to_decimal",
]
