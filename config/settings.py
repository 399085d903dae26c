"""Глобальные настройки CryptoFlash.

Настройки разделены по доменам (рыночные данные, портфель, алерты, тарифы,
хранилище), чтобы каждый сервис получал только свою секцию. Вся конфигурация
загружается из переменных окружения через Pydantic Settings.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import AnyHttpUrl, BaseModel, Field, PositiveFloat, PositiveInt, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parent.parent
ACCESSIBLE_ENV_FILE = BASE_DIR / "config" / "runtime.env"
DEFAULT_ENV_FILE = BASE_DIR / ".env"
ENV_FILE = ACCESSIBLE_ENV_FILE if ACCESSIBLE_ENV_FILE.exists() else DEFAULT_ENV_FILE


class MarketDataSettings(BaseModel):
    """Внешний API котировок (CoinGecko-совместимый)."""

    base_url: AnyHttpUrl = Field(
        "https://api.coingecko.com/api/v3",
        description="Базовый URL API без завершающего слеша",
    )
    cache_ttl_seconds: PositiveFloat = 60.0
    max_retries: int = Field(3, ge=0)
    retry_delay_sec: float = Field(2.0, ge=0)
    request_timeout: PositiveFloat = 10.0


class CacheSettings(BaseModel):
    """Настройки aiocache (только in-memory, кеш общий на процесс)."""

    alias: str = "default"
    sweep_ttl_seconds: PositiveInt = Field(
        300, description="Через сколько секунд aiocache физически выбрасывает запись"
    )


class PortfolioSettings(BaseModel):
    """Тайминги синхронизации портфеля."""

    debounce_sec: PositiveFloat = 0.5
    refresh_initial_delay_sec: float = Field(2.0, ge=0)
    refresh_interval_sec: PositiveFloat = 30.0


class AlertSettings(BaseModel):
    """Цикл проверки ценовых алертов."""

    interval_sec: PositiveFloat = 30.0
    webhook_url: AnyHttpUrl | None = Field(
        None, description="Куда POST-ить уведомления (если не задан — только лог)"
    )
    webhook_timeout: PositiveFloat = 10.0

    @field_validator("webhook_url", mode="before")
    @classmethod
    def _empty_str_to_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value


class PlanSettings(BaseModel):
    """Лимиты бесплатного тарифа."""

    free_max_holdings: PositiveInt = 5
    free_max_active_alerts: PositiveInt = 2


class StoreSettings(BaseModel):
    """Удалённое документное хранилище."""

    backend: Literal["memory", "sql"] = "memory"
    poll_interval_sec: PositiveFloat = 5.0


class DatabaseSettings(BaseModel):
    """SQLModel + aiosqlite (по умолчанию) для sql-хранилища и локальных ключей."""

    dsn: str = Field(
        "sqlite+aiosqlite:///./database/cryptoflash.db",
        description="Строка подключения SQLAlchemy/SQLModel",
    )
    echo: bool = False


class LoggingSettings(BaseModel):
    json_logs: bool = False
    level: str = "INFO"


class AppSettings(BaseSettings):
    """Главный контейнер настроек CryptoFlash."""

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE),
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    environment: Literal["dev", "prod"] = "dev"
    market_data: MarketDataSettings = MarketDataSettings()
    cache: CacheSettings = CacheSettings()
    portfolio: PortfolioSettings = PortfolioSettings()
    alerts: AlertSettings = AlertSettings()
    plans: PlanSettings = PlanSettings()
    store: StoreSettings = StoreSettings()
    database: DatabaseSettings = DatabaseSettings()
    logging: LoggingSettings = LoggingSettings()

    @property
    def is_production(self) -> bool:
        return self.environment == "prod"


# Ленивый синглтон (избегаем глобальных переменных в модулях).
_settings: AppSettings | None = None


def get_settings() -> AppSettings:
    """Возвращает единый экземпляр настроек.

    Значения кэшируются, поэтому .env читается ровно один раз за процесс.
    """

    global _settings
    if _settings is None:
        _settings = AppSettings()
    return _settings


__all__ = [
    "AlertSettings",
    "AppSettings",
    "CacheSettings",
    "DatabaseSettings",
    "LoggingSettings",
    "MarketDataSettings",
    "PlanSettings",
    "PortfolioSettings",
    "StoreSettings",
    "get_settings",
]
