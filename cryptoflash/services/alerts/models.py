"""Ценовой алерт и его сериализация в локальное хранилище."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from typing import Any

from cryptoflash.services.market import to_decimal
from cryptoflash.utils.timeutil import parse_timestamp, to_iso, utcnow


class AlertDirection(str, enum.Enum):
    ABOVE = "above"
    BELOW = "below"


@dataclass(frozen=True, slots=True)
class PriceAlert:
    """Алерт срабатывает один раз: is_active переходит True -> False и обратно не возвращается."""

    id: str
    coin_id: str
    target_price: Decimal
    direction: AlertDirection
    notify_address: str
    is_active: bool = True
    created_at: datetime = field(default_factory=utcnow)
    coin_name: str = ""
    coin_symbol: str = ""
    triggered_at: datetime | None = None
    triggered_price: Decimal | None = None

    def should_fire(self, price: Decimal) -> bool:
        if not self.is_active:
            return False
        if self.direction is AlertDirection.ABOVE:
            return price >= self.target_price
        return price <= self.target_price

    def deactivate(self, price: Decimal, when: datetime) -> "PriceAlert":
        if not self.is_active:
            return self
        return replace(self, is_active=False, triggered_at=when, triggered_price=price)

    def to_record(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "coinId": self.coin_id,
            "coinName": self.coin_name,
            "coinSymbol": self.coin_symbol,
            "targetPrice": str(self.target_price),
            "alertType": self.direction.value,
            "email": self.notify_address,
            "createdAt": to_iso(self.created_at),
            "isActive": self.is_active,
            "triggeredAt": to_iso(self.triggered_at) if self.triggered_at else None,
            "triggeredPrice": str(self.triggered_price) if self.triggered_price is not None else None,
        }

    @classmethod
    def from_record(cls, data: dict[str, Any]) -> "PriceAlert":
        triggered_price = data.get("triggeredPrice")
        return cls(
            id=str(data["id"]),
            coin_id=str(data["coinId"]),
            coin_name=str(data.get("coinName") or ""),
            coin_symbol=str(data.get("coinSymbol") or ""),
            target_price=to_decimal(data.get("targetPrice")),
            direction=AlertDirection(data.get("alertType", AlertDirection.ABOVE.value)),
            notify_address=str(data.get("email") or ""),
            created_at=parse_timestamp(data.get("createdAt")) or utcnow(),
            is_active=data.get("isActive") is True,
            triggered_at=parse_timestamp(data.get("triggeredAt")),
            triggered_price=to_decimal(triggered_price) if triggered_price is not None else None,
        )


__all__ = ["AlertDirection", "PriceAlert"]
