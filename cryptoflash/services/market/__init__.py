"""Клиент рыночных данных."""

from .client import (
    MarketDataClient,
    MarketDataError,
    MarketDataHTTPError,
    MarketDataTransportError,
    QuoteNotFoundError,
    get_market_client,
    normalize_url,
)
from .quotes import NftCollection, Quote, SearchResult, normalize_coin_id, to_decimal

__all__ = [
    "MarketDataClient",
    "MarketDataError",
    "MarketDataHTTPError",
    "MarketDataTransportError",
    "NftCollection",
    "Quote",
    "QuoteNotFoundError",
    "SearchResult",
    "get_market_client",
    "normalize_coin_id",
    "normalize_url",
    "to_decimal",
]
