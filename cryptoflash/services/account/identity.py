"""Идентичность владельца сессии."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class AccountContext:
    account_id: str
    email: str | None = None

    @property
    def order_email(self) -> str | None:
        """Email для выборки заказов; без него заказы не учитываются."""

        if self.email and self.email.strip():
            return self.email.strip()
        return None


__all__ = ["AccountContext"]
