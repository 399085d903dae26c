"""Пользовательские настройки интерфейса (тема оформления)."""

from __future__ import annotations

from typing import Literal, get_args

from .local_store import LocalStore

Theme = Literal["dark", "light"]
DEFAULT_THEME: Theme = "dark"


def theme_key(account_id: str) -> str:
    return f"theme:{account_id}"


class PreferencesService:
    def __init__(self, account_id: str, local_store: LocalStore) -> None:
        self._account_id = account_id
        self._local = local_store

    async def get_theme(self) -> Theme:
        value = await self._local.get(theme_key(self._account_id))
        # Неизвестное значение из старых версий трактуем как тему по умолчанию
        if value not in get_args(Theme):
            return DEFAULT_THEME
        return value

    async def set_theme(self, theme: str) -> Theme:
        if theme not in get_args(Theme):
            raise ValueError(f"Неизвестная тема: {theme!r}")
        await self._local.set(theme_key(self._account_id), theme)
        return theme  # type: ignore[return-value]


__all__ = ["DEFAULT_THEME", "PreferencesService", "Theme", "theme_key"]
