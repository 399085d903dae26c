from __future__ import annotations

from decimal import Decimal

from cryptoflash.services.market import to_decimal
from cryptoflash.services.market.quotes import merge_price_and_markets, parse_market_row


class TestToDecimal:
    def test_float_without_binary_artifacts(self):
        assert to_decimal(0.1) == Decimal("0.1")

    def test_garbage_becomes_default(self):
        assert to_decimal(None) == 0
        assert to_decimal("abc") == 0
        assert to_decimal(True) == 0
        assert to_decimal("NaN", default=Decimal("-1")) == Decimal("-1")


class TestParsing:
    def test_market_row_with_missing_fields(self):
        quote = parse_market_row({"id": "newcoin", "current_price": None})

        assert quote.name == "newcoin"
        assert quote.price == 0
        assert quote.image_url == ""

    def test_price_falls_back_to_market_row(self):
        quotes = merge_price_and_markets(
            {"bitcoin": {"usd": 101}},
            [
                {"id": "bitcoin", "name": "Bitcoin", "symbol": "btc", "current_price": 99},
                {"id": "tiny", "name": "Tiny", "symbol": "tny", "current_price": 0.002},
                {"id": "", "name": "broken"},
            ],
        )

        assert [(q.id, q.price) for q in quotes] == [
            ("bitcoin", Decimal("101")),
            ("tiny", Decimal("0.002")),
        ]
