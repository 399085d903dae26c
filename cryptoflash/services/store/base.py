"""Абстракция удалённого документного хранилища с real-time подписками.

Хранилище представлено чёрным ящиком с двумя примитивами: чтение/запись документов и
подписка на документ или выборку. Каждая подписка обслуживается своей
задачей и очередью, поэтому снапшоты приходят в обработчик строго по
порядку, а первый снапшот доставляется сразу после подписки.
"""

from __future__ import annotations

import asyncio
import copy
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Sequence, TypeVar

from loguru import logger

T = TypeVar("T")

SnapshotCallback = Callable[[T], Awaitable[None]]
ErrorCallback = Callable[[Exception], Awaitable[None]]


class DocumentStoreError(RuntimeError):
    """Ошибка удалённого хранилища."""


@dataclass(frozen=True, slots=True)
class FieldFilter:
    """Условие равенства поля (единственное, что нужно ядру)."""

    field: str
    value: Any

    def matches(self, data: dict[str, Any]) -> bool:
        return data.get(self.field) == self.value


@dataclass(frozen=True, slots=True)
class DocumentSnapshot:
    collection: str
    id: str
    data: dict[str, Any] | None

    @property
    def exists(self) -> bool:
        return self.data is not None


@dataclass(frozen=True, slots=True)
class QuerySnapshot:
    collection: str
    documents: tuple[DocumentSnapshot, ...]

    def __iter__(self):
        return iter(self.documents)

    def __len__(self) -> int:
        return len(self.documents)


class Subscription(Generic[T]):
    """Отменяемая подписка: очередь снапшотов и задача-обработчик."""

    def __init__(
        self,
        name: str,
        *,
        initial: Callable[[], Awaitable[T]],
        on_next: SnapshotCallback[T],
        on_error: ErrorCallback | None = None,
        on_cancel: Callable[["Subscription[T]"], None] | None = None,
    ) -> None:
        self.name = name
        self._initial = initial
        self._on_next = on_next
        self._on_error = on_error
        self._on_cancel = on_cancel
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._task: asyncio.Task[None] | None = None
        self._cancelled = False

    @property
    def active(self) -> bool:
        return not self._cancelled

    def start(self) -> None:
        if self._task is None:
            # Сначала начальный снапшот, дальше очередь изменений
            self._queue.put_nowait(_INITIAL)
            self._task = asyncio.create_task(self._run(), name=f"subscription:{self.name}")

    def push(self, item: T | Exception) -> None:
        if not self._cancelled:
            self._queue.put_nowait(item)

    def cancel(self) -> None:
        """Отписка; повторный вызов ничего не делает."""

        if self._cancelled:
            return
        self._cancelled = True
        if self._task is not None:
            self._task.cancel()
        if self._on_cancel is not None:
            self._on_cancel(self)

    async def drained(self) -> None:
        """Ждёт, пока все поставленные снапшоты будут обработаны."""

        if not self._cancelled:
            await self._queue.join()

    async def _run(self) -> None:
        while True:
            item = await self._queue.get()
            try:
                if item is _INITIAL:
                    item = await self._load_initial()
                if item is None:
                    continue
                if isinstance(item, Exception):
                    await self._dispatch_error(item)
                else:
                    await self._on_next(item)
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # noqa: BLE001
                logger.exception("Обработчик подписки {name} упал: {error}", name=self.name, error=exc)
            finally:
                self._queue.task_done()

    async def _load_initial(self) -> T | Exception | None:
        try:
            return await self._initial()
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            return exc

    async def _dispatch_error(self, exc: Exception) -> None:
        if self._on_error is None:
            logger.error("Ошибка подписки {name}: {error}", name=self.name, error=exc)
            return
        await self._on_error(exc)


_INITIAL = object()


class DocumentStore(ABC):
    """Базовое хранилище: CRUD реализуют наследники, подписки — здесь."""

    def __init__(self) -> None:
        self._doc_watchers: dict[tuple[str, str], set[Subscription[DocumentSnapshot]]] = {}
        self._query_watchers: dict[
            Subscription[QuerySnapshot], tuple[str, tuple[FieldFilter, ...]]
        ] = {}

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        ...

    @abstractmethod
    async def set(
        self,
        collection: str,
        doc_id: str,
        data: dict[str, Any],
        *,
        merge: bool = False,
    ) -> None:
        ...

    @abstractmethod
    async def delete(self, collection: str, doc_id: str) -> None:
        ...

    @abstractmethod
    async def _list(self, collection: str) -> list[tuple[str, dict[str, Any]]]:
        ...

    @abstractmethod
    async def add(self, collection: str, data: dict[str, Any]) -> str:
        ...

    async def query(
        self,
        collection: str,
        filters: Sequence[FieldFilter] = (),
    ) -> QuerySnapshot:
        docs = [
            DocumentSnapshot(collection, doc_id, copy.deepcopy(data))
            for doc_id, data in await self._list(collection)
            if all(f.matches(data) for f in filters)
        ]
        return QuerySnapshot(collection, tuple(docs))

    def watch_document(
        self,
        collection: str,
        doc_id: str,
        on_next: SnapshotCallback[DocumentSnapshot],
        on_error: ErrorCallback | None = None,
    ) -> Subscription[DocumentSnapshot]:
        key = (collection, doc_id)

        async def initial() -> DocumentSnapshot:
            return await self._document_snapshot(collection, doc_id)

        subscription: Subscription[DocumentSnapshot] = Subscription(
            f"{collection}/{doc_id}",
            initial=initial,
            on_next=on_next,
            on_error=on_error,
            on_cancel=lambda sub: self._forget_document_watcher(key, sub),
        )
        self._doc_watchers.setdefault(key, set()).add(subscription)
        subscription.start()
        self._on_watch(collection)
        return subscription

    def watch_query(
        self,
        collection: str,
        filters: Sequence[FieldFilter],
        on_next: SnapshotCallback[QuerySnapshot],
        on_error: ErrorCallback | None = None,
    ) -> Subscription[QuerySnapshot]:
        frozen = tuple(filters)

        async def initial() -> QuerySnapshot:
            return await self.query(collection, frozen)

        subscription: Subscription[QuerySnapshot] = Subscription(
            f"{collection}?{'&'.join(f'{f.field}={f.value}' for f in frozen)}",
            initial=initial,
            on_next=on_next,
            on_error=on_error,
            on_cancel=lambda sub: self._query_watchers.pop(sub, None),
        )
        self._query_watchers[subscription] = (collection, frozen)
        subscription.start()
        self._on_watch(collection)
        return subscription

    async def wait_idle(self) -> None:
        """Ждёт доставки всех снапшотов всем подписчикам (удобно в тестах)."""

        subscriptions: list[Subscription[Any]] = [
            sub for subs in self._doc_watchers.values() for sub in subs
        ]
        subscriptions.extend(self._query_watchers)
        for sub in subscriptions:
            await sub.drained()

    def watched_collections(self) -> set[str]:
        collections = {collection for collection, _ in self._doc_watchers}
        collections.update(collection for collection, _ in self._query_watchers.values())
        return collections

    async def _notify(self, collection: str, doc_id: str | None = None) -> None:
        """Рассылает свежие снапшоты подписчикам изменённого документа/коллекции."""

        for (watched_collection, watched_id), subs in list(self._doc_watchers.items()):
            if watched_collection != collection or (doc_id is not None and watched_id != doc_id):
                continue
            if not subs:
                continue
            snapshot = await self._document_snapshot(collection, watched_id)
            for sub in list(subs):
                sub.push(snapshot)
        for sub, (watched_collection, filters) in list(self._query_watchers.items()):
            if watched_collection != collection:
                continue
            sub.push(await self.query(collection, filters))

    def _broadcast_error(self, collection: str, exc: Exception) -> None:
        for (watched_collection, _), subs in list(self._doc_watchers.items()):
            if watched_collection == collection:
                for sub in list(subs):
                    sub.push(exc)
        for sub, (watched_collection, _) in list(self._query_watchers.items()):
            if watched_collection == collection:
                sub.push(exc)

    async def start(self) -> None:
        """Фоновые задачи хранилища; базовому ничего запускать не нужно."""

    async def close(self) -> None:
        """Останавливает фоновые задачи. Подписки отменяют их владельцы."""

    def _on_watch(self, collection: str) -> None:
        """Хук для наследников (например, запустить опрос БД)."""

    async def _document_snapshot(self, collection: str, doc_id: str) -> DocumentSnapshot:
        data = await self.get(collection, doc_id)
        return DocumentSnapshot(collection, doc_id, data)

    def _forget_document_watcher(
        self,
        key: tuple[str, str],
        subscription: Subscription[DocumentSnapshot],
    ) -> None:
        subs = self._doc_watchers.get(key)
        if subs is None:
            return
        subs.discard(subscription)
        if not subs:
            self._doc_watchers.pop(key, None)


__all__ = [
    "DocumentSnapshot",
    "DocumentStore",
    "DocumentStoreError",
    "ErrorCallback",
    "FieldFilter",
    "QuerySnapshot",
    "SnapshotCallback",
    "Subscription",
]
