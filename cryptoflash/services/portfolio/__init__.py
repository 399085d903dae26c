"""Портфель: позиции, агрегаты и синхронизация с хранилищем."""

from .errors import (
    HoldingNotFoundError,
    InvalidHoldingError,
    PlanLimitExceededError,
    PortfolioError,
)
from .holdings import Holding, PortfolioTotals, compute_totals
from .sync_engine import PortfolioSyncEngine

__all__ = [
    "Holding",
    "HoldingNotFoundError",
    "InvalidHoldingError",
    "PlanLimitExceededError",
    "PortfolioError",
    "PortfolioSyncEngine",
    "PortfolioTotals",
    "compute_totals",
]
