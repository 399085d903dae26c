"""Удалённое документное хранилище."""

from .base import (
    DocumentSnapshot,
    DocumentStore,
    DocumentStoreError,
    FieldFilter,
    QuerySnapshot,
    Subscription,
)
from .memory import MemoryDocumentStore
from .sql import SqlDocumentStore

__all__ = [
    "DocumentSnapshot",
    "DocumentStore",
    "DocumentStoreError",
    "FieldFilter",
    "MemoryDocumentStore",
    "QuerySnapshot",
    "SqlDocumentStore",
    "Subscription",
]
