"""
SQLite-backed document store.

Documents of every collection live in one table as JSON text. This backend
is meant for single-process deployments and for integration tests that
need durable storage.

Invariants:
    - Every write runs in its own IMMEDIATE transaction
    - batch_write() commits all operations in one transaction or none
    - upsert_by_field() finds and writes inside one transaction, so two
      importers cannot both create a document for the same natural key
    - Snapshots are delivered to in-process subscribers after commit

Table schema:
    documents:
        - collection TEXT
        - doc_id TEXT
        - data_json TEXT
        - created_at INTEGER (Unix ms)
        - updated_at INTEGER (Unix ms)
        - PRIMARY KEY (collection, doc_id)

How to change safely:
    - Schema migrations must be backward compatible
    - Keep JSON field names untouched; other readers depend on them
"""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..errors import NotFoundError, StoreConnectionError, StoreError
from .base import (
    Document,
    ErrorCallback,
    SnapshotCallback,
    SubscriptionHub,
    Unsubscribe,
    WhereClause,
    WriteOp,
    apply_patch,
    check_batch_size,
    matches_where,
    sort_documents,
)
from .memory import generate_id

logger = logging.getLogger(__name__)


class SqliteDocumentStore:
    """Document store persisted in a single SQLite file.

    Thread safety:
        A connection is opened per operation. Writes are serialized with an
        asyncio lock on top of SQLite's own locking.

    Example:
        >>> store = SqliteDocumentStore("/var/lib/mms/mms.db")
        >>> await store.connect()
        >>> doc_id = await store.put("members", {"campusId": "01234567"})
    """

    SCHEMA_VERSION = 1

    def __init__(self, db_path: str, busy_timeout_ms: int = 5000) -> None:
        """Initialize the store.

        Args:
            db_path: Path of the SQLite database file
            busy_timeout_ms: SQLite busy timeout
        """
        self.db_path = Path(db_path)
        self.busy_timeout_ms = busy_timeout_ms
        self._connected = False
        self._lock = asyncio.Lock()
        self._hub = SubscriptionHub(self._load)

    @property
    def is_connected(self) -> bool:
        return self._connected

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Open a connection configured for explicit transactions."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            conn = sqlite3.connect(
                str(self.db_path),
                timeout=self.busy_timeout_ms / 1000.0,
                isolation_level=None,
            )
        except sqlite3.Error as e:
            raise StoreConnectionError(f"Cannot open {self.db_path}: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
            yield conn
        finally:
            conn.close()

    @contextmanager
    def _transaction(self, operation: str, collection: Optional[str]) -> Iterator[sqlite3.Connection]:
        """IMMEDIATE transaction; sqlite errors surface as StoreError."""
        with self._get_connection() as conn:
            try:
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as e:
                raise StoreError(str(e), operation=operation, collection=collection) from e
            try:
                yield conn
                conn.execute("COMMIT")
            except sqlite3.Error as e:
                conn.execute("ROLLBACK")
                raise StoreError(str(e), operation=operation, collection=collection) from e
            except Exception:
                conn.execute("ROLLBACK")
                raise

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS documents (
                collection TEXT NOT NULL,
                doc_id TEXT NOT NULL,
                data_json TEXT NOT NULL DEFAULT '{}',
                created_at INTEGER NOT NULL,
                updated_at INTEGER NOT NULL,
                PRIMARY KEY (collection, doc_id)
            );

            CREATE INDEX IF NOT EXISTS idx_documents_collection ON documents(collection);

            INSERT OR IGNORE INTO schema_version (version, applied_at)
            VALUES (1, strftime('%s', 'now') * 1000);
        """)

    async def connect(self) -> None:
        """Create the database file and schema if they don't exist."""
        async with self._lock:
            with self._get_connection() as conn:
                self._create_schema(conn)
        self._connected = True
        logger.info(f"Opened document store: {self.db_path}")

    async def close(self) -> None:
        self._connected = False
        self._hub.clear()
        logger.debug("SqliteDocumentStore closed")

    async def get(self, collection: str, doc_id: str) -> Optional[Document]:
        self._check("get", collection)
        with self._get_connection() as conn:
            row = self._read_row(conn, collection, doc_id)
        return {"id": doc_id, **row} if row is not None else None

    async def query(
        self,
        collection: str,
        where: Optional[Sequence[WhereClause]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> List[Document]:
        self._check("query", collection)
        return self._load(collection, where, order_by, descending)

    def subscribe(
        self,
        collection: str,
        on_snapshot: SnapshotCallback,
        on_error: Optional[ErrorCallback] = None,
        where: Optional[Sequence[WhereClause]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> Unsubscribe:
        self._check("subscribe", collection)
        return self._hub.add(collection, on_snapshot, on_error, where, order_by, descending)

    async def put(
        self,
        collection: str,
        fields: Dict[str, Any],
        doc_id: Optional[str] = None,
    ) -> str:
        self._check("put", collection)
        doc_id = doc_id or generate_id()
        async with self._lock:
            with self._transaction("put", collection) as conn:
                self._write_row(conn, collection, doc_id, fields)
        self._hub.notify([collection])
        return doc_id

    async def update(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> None:
        self._check("update", collection)
        async with self._lock:
            with self._transaction("update", collection) as conn:
                existing = self._read_row(conn, collection, doc_id)
                if existing is None:
                    raise NotFoundError(f"No document {doc_id} in {collection}", collection, doc_id)
                self._write_row(conn, collection, doc_id, apply_patch(existing, fields))
        self._hub.notify([collection])

    async def delete(self, collection: str, doc_id: str) -> None:
        self._check("delete", collection)
        async with self._lock:
            with self._transaction("delete", collection) as conn:
                conn.execute(
                    "DELETE FROM documents WHERE collection = ? AND doc_id = ?",
                    (collection, doc_id),
                )
        self._hub.notify([collection])

    async def batch_write(self, ops: Sequence[WriteOp]) -> None:
        self._check("batch_write", None)
        check_batch_size(ops)
        async with self._lock:
            with self._transaction("batch_write", None) as conn:
                for op in ops:
                    if op.kind == "put":
                        self._write_row(conn, op.collection, op.doc_id, op.fields)
                    elif op.kind == "update":
                        existing = self._read_row(conn, op.collection, op.doc_id)
                        if existing is None:
                            raise StoreError(
                                f"Batch update of missing document {op.doc_id}",
                                operation="batch_write",
                                collection=op.collection,
                            )
                        self._write_row(conn, op.collection, op.doc_id, apply_patch(existing, op.fields))
                    elif op.kind == "delete":
                        conn.execute(
                            "DELETE FROM documents WHERE collection = ? AND doc_id = ?",
                            (op.collection, op.doc_id),
                        )
                    else:
                        raise ValueError(f"Unknown write op kind: {op.kind}")

        logger.debug("Batch committed", extra={"operations": len(ops)})
        self._hub.notify(sorted({op.collection for op in ops}))

    async def upsert_by_field(
        self,
        collection: str,
        field_name: str,
        value: Any,
        fields: Dict[str, Any],
        defaults: Optional[Dict[str, Any]] = None,
    ) -> Tuple[str, bool]:
        self._check("upsert_by_field", collection)
        async with self._lock:
            with self._transaction("upsert_by_field", collection) as conn:
                cursor = conn.execute(
                    """
                    SELECT doc_id, data_json FROM documents
                    WHERE collection = ? AND json_extract(data_json, ?) = ?
                    ORDER BY created_at LIMIT 1
                    """,
                    (collection, f"$.{field_name}", value),
                )
                row = cursor.fetchone()
                if row is not None:
                    doc_id = row["doc_id"]
                    merged = apply_patch(json.loads(row["data_json"]), fields)
                    self._write_row(conn, collection, doc_id, merged)
                    created = False
                else:
                    doc_id = generate_id()
                    self._write_row(conn, collection, doc_id, {**(defaults or {}), **fields})
                    created = True
        self._hub.notify([collection])
        return doc_id, created

    def _check(self, operation: str, collection: Optional[str]) -> None:
        if not self._connected:
            raise StoreConnectionError("Not connected", operation=operation, collection=collection)

    def _read_row(self, conn: sqlite3.Connection, collection: str, doc_id: str) -> Optional[Document]:
        try:
            cursor = conn.execute(
                "SELECT data_json FROM documents WHERE collection = ? AND doc_id = ?",
                (collection, doc_id),
            )
        except sqlite3.Error as e:
            raise StoreError(str(e), operation="get", collection=collection) from e
        row = cursor.fetchone()
        return json.loads(row["data_json"]) if row else None

    def _write_row(
        self,
        conn: sqlite3.Connection,
        collection: str,
        doc_id: str,
        data: Dict[str, Any],
    ) -> None:
        now = int(time.time() * 1000)
        conn.execute(
            """
            INSERT INTO documents (collection, doc_id, data_json, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT (collection, doc_id)
            DO UPDATE SET data_json = excluded.data_json, updated_at = excluded.updated_at
            """,
            (collection, doc_id, json.dumps(data), now, now),
        )

    def _load(
        self,
        collection: str,
        where: Optional[Sequence[WhereClause]],
        order_by: Optional[str],
        descending: bool,
    ) -> List[Document]:
        sql = "SELECT doc_id, data_json FROM documents WHERE collection = ?"
        params: list[Any] = [collection]
        # Push scalar equality down to SQLite; everything is re-checked below.
        for field_path, op, expected in where or ():
            if op == "==" and isinstance(expected, str):
                sql += " AND json_extract(data_json, ?) = ?"
                params.extend([f"$.{field_path}", expected])

        with self._get_connection() as conn:
            try:
                rows = conn.execute(sql, params).fetchall()
            except sqlite3.Error as e:
                raise StoreError(str(e), operation="query", collection=collection) from e

        documents = []
        for row in rows:
            data = json.loads(row["data_json"])
            if matches_where(data, where):
                documents.append({"id": row["doc_id"], **data})
        return sort_documents(documents, order_by, descending)

    # Testing helpers

    def active_subscription_count(self, collection: Optional[str] = None) -> int:
        """Number of live subscriptions (testing helper)."""
        return self._hub.active_count(collection)
