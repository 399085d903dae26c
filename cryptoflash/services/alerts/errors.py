"""Ошибки алертов и уведомлений."""


class AlertError(RuntimeError):
    """Базовое исключение алертов."""


class InvalidAlertError(AlertError, ValueError):
    pass


class AlertLimitExceededError(AlertError):
    def __init__(self, limit: int) -> None:
        super().__init__(f"Лимит бесплатного тарифа: не больше {limit} активных алертов")
        self.limit = limit


class NotificationError(AlertError):
    """Уведомление не доставлено; алерт остаётся активным."""


__all__ = [
    "AlertError",
    "AlertLimitExceededError",
    "InvalidAlertError",
    "NotificationError",
]
