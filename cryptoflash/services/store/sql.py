"""Документное хранилище поверх SQLModel.

Записи через этот экземпляр рассылаются подписчикам сразу. Записи других
процессов ловит фоновый опрос: по каждой наблюдаемой коллекции сравнивается
отпечаток (doc_id, version), и при изменении подписчики получают свежие снапшоты.
"""

from __future__ import annotations

import asyncio
import copy
import secrets
from typing import Any, Sequence

from loguru import logger
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlmodel.ext.asyncio.session import AsyncSession

from config.settings import get_settings
from cryptoflash.repositories import (
    collection_fingerprint,
    delete_document,
    get_document,
    list_documents,
    upsert_document,
)
from .base import DocumentSnapshot, DocumentStore, DocumentStoreError, FieldFilter, QuerySnapshot


class SqlDocumentStore(DocumentStore):
    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        *,
        poll_interval: float | None = None,
    ) -> None:
        super().__init__()
        self._session_maker = session_maker
        self._poll_interval = poll_interval or get_settings().store.poll_interval_sec
        self._fingerprints: dict[str, tuple[tuple[str, int], ...]] = {}
        self._poll_task: asyncio.Task[None] | None = None
        self._stop = asyncio.Event()

    async def start(self) -> None:
        if self._poll_task and not self._poll_task.done():
            return
        self._stop.clear()
        self._poll_task = asyncio.create_task(self._poll_loop(), name="sql-store-poll")
        logger.info("SqlDocumentStore опрос запущен (интервал {interval}s)", interval=self._poll_interval)

    async def close(self) -> None:
        self._stop.set()
        if self._poll_task:
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
            self._poll_task = None

    async def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        try:
            async with self._session_maker() as session:
                document = await get_document(session, collection, doc_id)
                return copy.deepcopy(document.data) if document is not None else None
        except Exception as exc:
            raise DocumentStoreError(f"Чтение {collection}/{doc_id} не удалось: {exc}") from exc

    async def set(
        self,
        collection: str,
        doc_id: str,
        data: dict[str, Any],
        *,
        merge: bool = False,
    ) -> None:
        try:
            async with self._session_maker() as session:
                await upsert_document(
                    session,
                    collection=collection,
                    doc_id=doc_id,
                    data=copy.deepcopy(data),
                    merge=merge,
                )
        except Exception as exc:
            raise DocumentStoreError(f"Запись {collection}/{doc_id} не удалась: {exc}") from exc
        await self._after_write(collection, doc_id)

    async def add(self, collection: str, data: dict[str, Any]) -> str:
        doc_id = secrets.token_hex(10)
        await self.set(collection, doc_id, data)
        return doc_id

    async def delete(self, collection: str, doc_id: str) -> None:
        try:
            async with self._session_maker() as session:
                deleted = await delete_document(session, collection, doc_id)
        except Exception as exc:
            raise DocumentStoreError(f"Удаление {collection}/{doc_id} не удалось: {exc}") from exc
        if deleted:
            await self._after_write(collection, doc_id)

    async def _list(self, collection: str) -> list[tuple[str, dict[str, Any]]]:
        try:
            async with self._session_maker() as session:
                documents = await list_documents(session, collection)
                return [(doc.doc_id, doc.data) for doc in documents]
        except Exception as exc:
            raise DocumentStoreError(f"Чтение коллекции {collection} не удалось: {exc}") from exc

    async def query(
        self,
        collection: str,
        filters: Sequence[FieldFilter] = (),
    ) -> QuerySnapshot:
        await self._ensure_baseline(collection)
        return await super().query(collection, filters)

    async def _document_snapshot(self, collection: str, doc_id: str) -> DocumentSnapshot:
        await self._ensure_baseline(collection)
        return await super()._document_snapshot(collection, doc_id)

    async def _ensure_baseline(self, collection: str) -> None:
        # Отпечаток снимается до первого чтения: запись между чтением и опросом не теряется
        if collection in self._fingerprints:
            return
        try:
            self._fingerprints[collection] = await self._fingerprint(collection)
        except DocumentStoreError as exc:
            logger.warning("Отпечаток {collection} не снят: {error}", collection=collection, error=exc)

    async def _after_write(self, collection: str, doc_id: str) -> None:
        if collection in self.watched_collections():
            self._fingerprints[collection] = await self._fingerprint(collection)
        await self._notify(collection, doc_id)

    async def poll_once(self) -> None:
        """Один проход опроса: уведомляет о коллекциях, изменённых извне.

        Отпечаток запоминается только после успешной рассылки, поэтому
        изменение, которое не удалось разослать, повторится на следующем проходе.
        """

        watched = self.watched_collections()
        for collection in set(self._fingerprints) - watched:
            del self._fingerprints[collection]
        for collection in sorted(watched):
            try:
                fingerprint = await self._fingerprint(collection)
                previous = self._fingerprints.get(collection)
                if previous is not None and previous != fingerprint:
                    logger.debug("Коллекция {collection} изменилась извне", collection=collection)
                    await self._notify(collection)
                self._fingerprints[collection] = fingerprint
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # noqa: BLE001
                logger.warning("Опрос коллекции {collection} упал: {error}", collection=collection, error=exc)
                error = exc if isinstance(exc, DocumentStoreError) else DocumentStoreError(str(exc))
                self._broadcast_error(collection, error)

    async def _poll_loop(self) -> None:
        while not self._stop.is_set():
            try:
                await self.poll_once()
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # noqa: BLE001
                logger.exception("Цикл опроса SqlDocumentStore упал: {error}", error=exc)
            await asyncio.sleep(self._poll_interval)

    async def _fingerprint(self, collection: str) -> tuple[tuple[str, int], ...]:
        try:
            async with self._session_maker() as session:
                return await collection_fingerprint(session, collection)
        except Exception as exc:
            raise DocumentStoreError(f"Отпечаток коллекции {collection} не получен: {exc}") from exc


__all__ = ["SqlDocumentStore"]
