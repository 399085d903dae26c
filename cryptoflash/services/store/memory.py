"""In-process документное хранилище (dev-режим и тесты)."""

from __future__ import annotations

import copy
import secrets
from typing import Any

from .base import DocumentStore


class MemoryDocumentStore(DocumentStore):
    """Словарь коллекций; подписчики получают снапшот после каждой записи."""

    def __init__(self) -> None:
        super().__init__()
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}
        self.writes: list[tuple[str, str, dict[str, Any]]] = []

    async def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        data = self._collections.get(collection, {}).get(doc_id)
        return copy.deepcopy(data) if data is not None else None

    async def set(
        self,
        collection: str,
        doc_id: str,
        data: dict[str, Any],
        *,
        merge: bool = False,
    ) -> None:
        documents = self._collections.setdefault(collection, {})
        payload = copy.deepcopy(data)
        if merge and doc_id in documents:
            documents[doc_id].update(payload)
        else:
            documents[doc_id] = payload
        self.writes.append((collection, doc_id, copy.deepcopy(documents[doc_id])))
        await self._notify(collection, doc_id)

    async def add(self, collection: str, data: dict[str, Any]) -> str:
        doc_id = secrets.token_hex(10)
        await self.set(collection, doc_id, data)
        return doc_id

    async def delete(self, collection: str, doc_id: str) -> None:
        if self._collections.get(collection, {}).pop(doc_id, None) is not None:
            await self._notify(collection, doc_id)

    async def _list(self, collection: str) -> list[tuple[str, dict[str, Any]]]:
        return list(self._collections.get(collection, {}).items())

    def writes_to(self, collection: str, doc_id: str) -> list[dict[str, Any]]:
        return [data for c, d, data in self.writes if c == collection and d == doc_id]


__all__ = ["MemoryDocumentStore"]
