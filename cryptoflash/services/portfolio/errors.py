"""Ошибки портфеля."""


class PortfolioError(RuntimeError):
    """Базовое исключение портфеля."""


class InvalidHoldingError(PortfolioError, ValueError):
    """Количество или цена покупки не положительные."""


class HoldingNotFoundError(PortfolioError, LookupError):
    pass


class PlanLimitExceededError(PortfolioError):
    """Бесплатный тариф исчерпал лимит позиций."""

    def __init__(self, limit: int) -> None:
        super().__init__(f"Лимит бесплатного тарифа: не больше {limit} позиций")
        self.limit = limit


__all__ = [
    "HoldingNotFoundError",
    "InvalidHoldingError",
    "PlanLimitExceededError",
    "PortfolioError",
]
