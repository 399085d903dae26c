"""SQLModel сущности CryptoFlash."""

from .document import StoredDocument  # noqa: F401
from .local_entry import LocalEntry  # noqa: F401

__all__ = [
    "LocalEntry",
    "StoredDocument",
]
