"""Аккаунт: идентичность и Pro-статус."""

from .entitlement import (
    NOT_ENTITLED,
    EntitlementFact,
    EntitlementResolver,
    OrdersState,
    ProfileState,
    remaining_days,
    resolve_entitlement,
)
from .identity import AccountContext

__all__ = [
    "AccountContext",
    "EntitlementFact",
    "EntitlementResolver",
    "NOT_ENTITLED",
    "OrdersState",
    "ProfileState",
    "remaining_days",
    "resolve_entitlement",
]
