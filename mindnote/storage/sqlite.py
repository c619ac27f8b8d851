"""SQLite document store.

One ``documents`` table keyed by (collection, doc_id) with JSON bodies.
Connections are opened per operation; ``transact`` takes the write lock
up front with ``BEGIN IMMEDIATE`` so concurrent read-modify-write calls
on the same database serialize.
"""

import contextlib
import json
import logging
import sqlite3
from pathlib import Path
from typing import Iterable, List, Optional, Tuple, Union

from mindnote.protocols import InternalError
from mindnote.storage.base import Document, Filter, Mutator, matches, split_path
from mindnote.types import format_datetime, utc_now

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS documents (
    collection TEXT NOT NULL,
    doc_id TEXT NOT NULL,
    body TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (collection, doc_id)
);
CREATE INDEX IF NOT EXISTS idx_documents_collection ON documents(collection);
"""


class SQLiteDocumentStore:
    """File-backed document store."""

    def __init__(self, db_path: Union[str, Path]):
        self.db_path = Path(db_path).expanduser()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _init_db(self) -> None:
        with contextlib.closing(self._get_conn()) as conn:
            conn.executescript(SCHEMA)
            conn.commit()

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, isolation_level=None, timeout=5.0)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA busy_timeout=5000")
        return conn

    @contextlib.contextmanager
    def _connect(self, immediate: bool = False):
        """Yield a connection inside a transaction; commit, roll back on error, always close."""
        conn = self._get_conn()
        try:
            conn.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
            yield conn
            conn.execute("COMMIT")
        except Exception as e:
            logger.debug("Transaction failed, rolling back: %s", e)
            conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()

    @staticmethod
    def _decode(row: sqlite3.Row) -> Document:
        try:
            return json.loads(row["body"])
        except json.JSONDecodeError as exc:
            raise InternalError(f"Corrupt document body for {row['doc_id']}") from exc

    @staticmethod
    def _write(conn: sqlite3.Connection, collection: str, doc_id: str, data: Document) -> None:
        conn.execute(
            """
            INSERT INTO documents (collection, doc_id, body, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(collection, doc_id)
            DO UPDATE SET body = excluded.body, updated_at = excluded.updated_at
            """,
            (collection, doc_id, json.dumps(data), format_datetime(utc_now())),
        )

    def get(self, path: str) -> Optional[Document]:
        collection, doc_id = split_path(path)
        with self._connect() as conn:
            row = conn.execute(
                "SELECT doc_id, body FROM documents WHERE collection = ? AND doc_id = ?",
                (collection, doc_id),
            ).fetchone()
        return self._decode(row) if row else None

    def set(self, path: str, data: Document) -> None:
        collection, doc_id = split_path(path)
        with self._connect(immediate=True) as conn:
            self._write(conn, collection, doc_id, data)

    def transact(self, path: str, fn: Mutator) -> Optional[Document]:
        collection, doc_id = split_path(path)
        with self._connect(immediate=True) as conn:
            row = conn.execute(
                "SELECT doc_id, body FROM documents WHERE collection = ? AND doc_id = ?",
                (collection, doc_id),
            ).fetchone()
            current = self._decode(row) if row else None
            updated = fn(current)
            if updated is None:
                return current
            self._write(conn, collection, doc_id, updated)
            return updated

    def query(
        self,
        collection: str,
        where: Iterable[Filter] = (),
        limit: Optional[int] = None,
    ) -> List[Tuple[str, Document]]:
        filters = list(where)
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT doc_id, body FROM documents WHERE collection = ? ORDER BY rowid",
                (collection.strip("/"),),
            ).fetchall()
        results = []
        for row in rows:
            doc = self._decode(row)
            if matches(doc, filters):
                results.append((row["doc_id"], doc))
                if limit is not None and len(results) >= limit:
                    break
        return results
