"""Работа с таблицей documents."""

from __future__ import annotations

from typing import Any

from sqlalchemy.orm.attributes import flag_modified
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from cryptoflash.models import StoredDocument


async def get_document(session: AsyncSession, collection: str, doc_id: str) -> StoredDocument | None:
    return await session.get(StoredDocument, (collection, doc_id))


async def upsert_document(
    session: AsyncSession,
    *,
    collection: str,
    doc_id: str,
    data: dict[str, Any],
    merge: bool = False,
) -> StoredDocument:
    document = await get_document(session, collection, doc_id)
    if document is None:
        document = StoredDocument(collection=collection, doc_id=doc_id, data=data)
    else:
        document.data = {**document.data, **data} if merge else data
        document.version += 1
        document.touch()
        flag_modified(document, "data")
    session.add(document)
    await session.commit()
    await session.refresh(document)
    return document


async def delete_document(session: AsyncSession, collection: str, doc_id: str) -> bool:
    document = await get_document(session, collection, doc_id)
    if document is None:
        return False
    await session.delete(document)
    await session.commit()
    return True


async def list_documents(session: AsyncSession, collection: str) -> list[StoredDocument]:
    stmt = select(StoredDocument).where(StoredDocument.collection == collection)
    result = await session.exec(stmt)
    return list(result.all())


async def collection_fingerprint(session: AsyncSession, collection: str) -> tuple[tuple[str, int], ...]:
    """Пары (doc_id, version): меняются при любой записи в коллекцию."""

    stmt = (
        select(StoredDocument.doc_id, StoredDocument.version)
        .where(StoredDocument.collection == collection)
        .order_by(StoredDocument.doc_id)
    )
    result = await session.exec(stmt)
    return tuple((doc_id, version) for doc_id, version in result.all())


__all__ = [
    "collection_fingerprint",
    "delete_document",
    "get_document",
    "list_documents",
    "upsert_document",
]
