"""Позиции портфеля, их документное представление и агрегаты."""

from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Any, Iterable

from cryptoflash.services.market import Quote, to_decimal

ZERO = Decimal("0")
HUNDRED = Decimal("100")


@dataclass(frozen=True, slots=True)
class Holding:
    """Одна монета в портфеле. Количество и цена покупки строго больше нуля."""

    id: str
    name: str
    symbol: str
    quantity: Decimal
    purchase_price: Decimal
    current_price: Decimal = ZERO
    change_24h_percent: Decimal = ZERO
    image_url: str = ""

    @property
    def value(self) -> Decimal:
        return self.current_price * self.quantity

    @property
    def cost(self) -> Decimal:
        return self.purchase_price * self.quantity

    @property
    def pnl(self) -> Decimal:
        return self.value - self.cost

    @property
    def pnl_24h(self) -> Decimal:
        return self.value * self.change_24h_percent / HUNDRED

    def with_quote(self, quote: Quote) -> "Holding":
        return replace(
            self,
            current_price=quote.price,
            change_24h_percent=quote.change_24h_percent,
        )

    def price_differs(self, quote: Quote) -> bool:
        return (
            self.current_price != quote.price
            or self.change_24h_percent != quote.change_24h_percent
        )

    def to_document(self) -> dict[str, Any]:
        # Decimal пишем строкой: JSON-хранилища теряют точность на float
        return {
            "id": self.id,
            "name": self.name,
            "symbol": self.symbol,
            "image": self.image_url,
            "quantity": str(self.quantity),
            "purchasePrice": str(self.purchase_price),
            "currentPrice": str(self.current_price),
            "change24h": str(self.change_24h_percent),
        }

    @classmethod
    def from_document(cls, data: dict[str, Any]) -> "Holding":
        coin_id = str(data.get("id") or "").strip()
        if not coin_id:
            raise ValueError("holding без id")
        quantity = to_decimal(data.get("quantity"))
        purchase_price = to_decimal(data.get("purchasePrice"))
        if quantity <= 0 or purchase_price <= 0:
            raise ValueError(f"holding {coin_id}: quantity и purchasePrice должны быть больше нуля")
        return cls(
            id=coin_id,
            name=str(data.get("name") or coin_id),
            symbol=str(data.get("symbol") or ""),
            image_url=str(data.get("image") or ""),
            quantity=quantity,
            purchase_price=purchase_price,
            current_price=to_decimal(data.get("currentPrice", data.get("price"))),
            change_24h_percent=to_decimal(data.get("change24h")),
        )


@dataclass(frozen=True, slots=True)
class PortfolioTotals:
    total_value: Decimal = ZERO
    total_cost: Decimal = ZERO
    pnl: Decimal = ZERO
    pnl_percent: Decimal = ZERO
    pnl_24h: Decimal = ZERO


def compute_totals(holdings: Iterable[Holding]) -> PortfolioTotals:
    """Стоимость, себестоимость и P&L; процент 0 при нулевой себестоимости."""

    total_value = ZERO
    total_cost = ZERO
    pnl_24h = ZERO
    for holding in holdings:
        total_value += holding.value
        total_cost += holding.cost
        pnl_24h += holding.pnl_24h
    pnl = total_value - total_cost
    pnl_percent = pnl / total_cost * HUNDRED if total_cost else ZERO
    return PortfolioTotals(
        total_value=total_value,
        total_cost=total_cost,
        pnl=pnl,
        pnl_percent=pnl_percent,
        pnl_24h=pnl_24h,
    )


__all__ = ["Holding", "PortfolioTotals", "compute_totals"]
