"""Document store contract.

Documents are JSON-compatible dicts addressed by slash-separated paths
(``users/<uid>/thoughts/<id>``). The collection is everything before the
last segment.

The only atomic primitive is ``transact``: a read-modify-write on a single
document. There are no multi-document transactions.
"""

from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol, Tuple

Document = Dict[str, Any]
Filter = Tuple[str, str, Any]
Mutator = Callable[[Optional[Document]], Optional[Document]]

FILTER_OPS = ("==", "!=", "in", "not-in")


def split_path(path: str) -> Tuple[str, str]:
    """Split a document path into (collection, doc_id)."""
    collection, sep, doc_id = path.strip("/").rpartition("/")
    if not sep or not collection or not doc_id:
        raise ValueError(f"Invalid document path: {path!r}")
    return collection, doc_id


def matches(document: Document, where: Iterable[Filter]) -> bool:
    """Evaluate Firestore-style (field, op, value) filters against a document."""
    for field_name, op, value in where:
        actual = document.get(field_name)
        if op == "==":
            if actual != value:
                return False
        elif op == "!=":
            if actual == value:
                return False
        elif op == "in":
            if actual not in value:
                return False
        elif op == "not-in":
            if actual in value:
                return False
        else:
            raise ValueError(f"Unsupported filter operator: {op!r}")
    return True


class DocumentStore(Protocol):
    """Protocol for document persistence backends."""

    def get(self, path: str) -> Optional[Document]:
        """Get a document, or None if it does not exist."""
        ...

    def set(self, path: str, data: Document) -> None:
        """Write a whole document, replacing any existing one."""
        ...

    def transact(self, path: str, fn: Mutator) -> Optional[Document]:
        """Atomically read, transform and write one document.

        ``fn`` receives the current document (or None) and returns the new
        document, or None to leave it untouched. An exception raised by ``fn``
        aborts without writing and propagates. Returns the stored document.
        """
        ...

    def query(
        self,
        collection: str,
        where: Iterable[Filter] = (),
        limit: Optional[int] = None,
    ) -> List[Tuple[str, Document]]:
        """List (doc_id, document) pairs in a collection matching every filter."""
        ...
