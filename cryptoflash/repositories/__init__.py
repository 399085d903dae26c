"""Репозитории для работы с БД."""

from .document_repo import (
    collection_fingerprint,
    delete_document,
    get_document,
    list_documents,
    upsert_document,
)
from .local_repo import delete_local_value, get_local_value, set_local_value

__all__ = [
    "collection_fingerprint",
    "delete_document",
    "delete_local_value",
    "get_document",
    "get_local_value",
    "list_documents",
    "set_local_value",
    "upsert_document",
]
