"""Разбор меток времени из документов хранилища."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> datetime | None:
    """datetime, ISO-строка, epoch-миллисекунды или объект с to_datetime().

    Наивные значения считаются UTC. Нераспознанное превращается в None.
    """

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        result = value
    elif isinstance(value, (int, float)):
        try:
            result = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            result = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        # Timestamp из SDK хранилищ (google.cloud / protobuf)
        converter = getattr(value, "to_datetime", None) or getattr(value, "ToDatetime", None)
        if converter is None:
            return None
        result = converter()
        if not isinstance(result, datetime):
            return None
    if result.tzinfo is None:
        result = result.replace(tzinfo=timezone.utc)
    return result


def to_iso(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat()


__all__ = ["parse_timestamp", "to_iso", "utcnow"]
