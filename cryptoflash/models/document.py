"""Документы удалённого хранилища (sql-бэкенд)."""

from __future__ import annotations

from sqlalchemy import JSON
from sqlmodel import Column, Field

from .base import TimeStampedModel


class StoredDocument(TimeStampedModel, table=True):
    __tablename__ = "documents"

    collection: str = Field(primary_key=True, max_length=64)
    doc_id: str = Field(primary_key=True, max_length=256)
    data: dict = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    version: int = Field(default=1, nullable=False)


__all__ = ["StoredDocument"]
