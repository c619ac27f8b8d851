"""Document storage backends."""

from mindnote.storage.base import DocumentStore
from mindnote.storage.memory import InMemoryDocumentStore
from mindnote.storage.sqlite import SQLiteDocumentStore

__all__ = ["DocumentStore", "InMemoryDocumentStore", "SQLiteDocumentStore"]
