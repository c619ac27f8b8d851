"""In-memory document store for tests and local development."""

import copy
import threading
from typing import Dict, Iterable, List, Optional, Tuple

from mindnote.storage.base import Document, Filter, Mutator, matches, split_path


class InMemoryDocumentStore:
    """Dict-backed store. A single lock serializes all operations."""

    def __init__(self):
        self._collections: Dict[str, Dict[str, Document]] = {}
        self._lock = threading.RLock()

    def get(self, path: str) -> Optional[Document]:
        collection, doc_id = split_path(path)
        with self._lock:
            doc = self._collections.get(collection, {}).get(doc_id)
            return copy.deepcopy(doc) if doc is not None else None

    def set(self, path: str, data: Document) -> None:
        collection, doc_id = split_path(path)
        with self._lock:
            self._collections.setdefault(collection, {})[doc_id] = copy.deepcopy(data)

    def transact(self, path: str, fn: Mutator) -> Optional[Document]:
        collection, doc_id = split_path(path)
        with self._lock:
            docs = self._collections.setdefault(collection, {})
            current = docs.get(doc_id)
            updated = fn(copy.deepcopy(current) if current is not None else None)
            if updated is None:
                return copy.deepcopy(current) if current is not None else None
            docs[doc_id] = copy.deepcopy(updated)
            return copy.deepcopy(updated)

    def query(
        self,
        collection: str,
        where: Iterable[Filter] = (),
        limit: Optional[int] = None,
    ) -> List[Tuple[str, Document]]:
        filters = list(where)
        results = []
        with self._lock:
            for doc_id, doc in self._collections.get(collection.strip("/"), {}).items():
                if matches(doc, filters):
                    results.append((doc_id, copy.deepcopy(doc)))
                    if limit is not None and len(results) >= limit:
                        break
        return results

