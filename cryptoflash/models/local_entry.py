"""Локальные ключи клиента (алерты, тема оформления)."""

from __future__ import annotations

from typing import Any

from sqlalchemy import JSON
from sqlmodel import Column, Field

from .base import TimeStampedModel


class LocalEntry(TimeStampedModel, table=True):
    __tablename__ = "local_entries"

    key: str = Field(primary_key=True, max_length=256)
    value: Any = Field(default=None, sa_column=Column(JSON))


__all__ = ["LocalEntry"]
