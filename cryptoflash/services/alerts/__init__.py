"""Ценовые алерты: модель, хранение, уведомления и цикл проверки."""

from .errors import (
    AlertError,
    AlertLimitExceededError,
    InvalidAlertError,
    NotificationError,
)
from .models import AlertDirection, PriceAlert
from .monitor import AlertMonitor
from .notifiers import LogNotifier, Notifier, WebhookNotifier, build_payload, create_notifier
from .repository import AlertRepository, alerts_key

__all__ = [
    "AlertDirection",
    "AlertError",
    "AlertLimitExceededError",
    "AlertMonitor",
    "AlertRepository",
    "InvalidAlertError",
    "LogNotifier",
    "NotificationError",
    "Notifier",
    "PriceAlert",
    "WebhookNotifier",
    "alerts_key",
    "build_payload",
    "create_notifier",
]
