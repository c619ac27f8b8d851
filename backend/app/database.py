"""Document store wiring for the backend."""

from mindnote.storage import DocumentStore, SQLiteDocumentStore

from .config import Settings, get_settings

_store: DocumentStore | None = None


def get_document_store(settings: Settings | None = None) -> DocumentStore:
    """Get the cached SQLite document store."""
    global _store
    if _store is None:
        if settings is None:
            settings = get_settings()
        _store = SQLiteDocumentStore(settings.database_path)
    return _store
