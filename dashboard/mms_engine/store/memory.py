"""
In-memory document store implementation for testing.

This module provides a simple in-memory backend for:
- Unit tests
- Integration tests
- Local development without a database file

Invariants:
    - All data is lost on process exit
    - Provides the same batch atomicity and size limit as production
    - Snapshots are delivered synchronously after each committed write

How to change safely:
    - This is test-oriented code, but keep it compatible with DocumentStore
    - Add helpers for testing scenarios under "Testing helpers"
"""

from __future__ import annotations

import asyncio
import copy
import logging
import uuid
from collections import defaultdict, deque
from typing import Any, Deque, Dict, List, Optional, Sequence, Tuple

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

logger = logging.getLogger(__name__)


def generate_id() -> str:
    """Store-style random document id (20 hex characters)."""
    return uuid.uuid4().hex[:20]


class InMemoryDocumentStore:
    """In-memory implementation of DocumentStore.

    Attributes:
        batch_sizes: Size of every attempted batch_write() call, in call order

    Thread safety:
        Writes are serialized with an asyncio lock. Safe to use from
        multiple coroutines.

    Example:
        >>> store = InMemoryDocumentStore()
        >>> await store.connect()
        >>> doc_id = await store.put("events", {"name": "NCS 1", "type": "NCS"})
        >>> await store.get("events", doc_id)
    """

    def __init__(self) -> None:
        self._collections: Dict[str, Dict[str, Document]] = defaultdict(dict)
        self._connected = False
        self._lock = asyncio.Lock()
        self._hub = SubscriptionHub(self._load)
        self._failures: Dict[str, Deque[StoreError]] = defaultdict(deque)
        self.batch_sizes: List[int] = []

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        """Connect (no-op for in-memory)."""
        self._connected = True
        logger.debug("InMemoryDocumentStore connected")

    async def close(self) -> None:
        """Close, cancel subscriptions and clear all data."""
        self._connected = False
        self._hub.clear()
        self._collections.clear()
        logger.debug("InMemoryDocumentStore closed")

    async def get(self, collection: str, doc_id: str) -> Optional[Document]:
        self._check("get", collection)
        doc = self._collections[collection].get(doc_id)
        return self._with_id(doc_id, doc) if doc is not None else None

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
            self._collections[collection][doc_id] = copy.deepcopy(fields)
        self._hub.notify([collection])
        return doc_id

    async def update(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> None:
        self._check("update", collection)
        async with self._lock:
            existing = self._collections[collection].get(doc_id)
            if existing is None:
                raise NotFoundError(f"No document {doc_id} in {collection}", collection, doc_id)
            self._collections[collection][doc_id] = apply_patch(existing, fields)
        self._hub.notify([collection])

    async def delete(self, collection: str, doc_id: str) -> None:
        self._check("delete", collection)
        async with self._lock:
            self._collections[collection].pop(doc_id, None)
        self._hub.notify([collection])

    async def batch_write(self, ops: Sequence[WriteOp]) -> None:
        check_batch_size(ops)
        self.batch_sizes.append(len(ops))
        self._check("batch_write", None)

        async with self._lock:
            # Stage every change first so a failing op leaves nothing applied.
            staged: Dict[Tuple[str, str], Optional[Document]] = {}
            for op in ops:
                key = (op.collection, op.doc_id)
                current = staged[key] if key in staged else self._collections[op.collection].get(op.doc_id)
                if op.kind == "put":
                    staged[key] = copy.deepcopy(op.fields)
                elif op.kind == "update":
                    if current is None:
                        raise StoreError(
                            f"Batch update of missing document {op.doc_id}",
                            operation="batch_write",
                            collection=op.collection,
                        )
                    staged[key] = apply_patch(current, op.fields)
                elif op.kind == "delete":
                    staged[key] = None
                else:
                    raise ValueError(f"Unknown write op kind: {op.kind}")

            for (collection, doc_id), doc in staged.items():
                if doc is None:
                    self._collections[collection].pop(doc_id, None)
                else:
                    self._collections[collection][doc_id] = doc

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
            for doc_id, doc in self._collections[collection].items():
                if doc.get(field_name) == value:
                    self._collections[collection][doc_id] = apply_patch(doc, fields)
                    created = False
                    break
            else:
                doc_id = generate_id()
                self._collections[collection][doc_id] = copy.deepcopy({**(defaults or {}), **fields})
                created = True
        self._hub.notify([collection])
        return doc_id, created

    def _check(self, operation: str, collection: Optional[str]) -> None:
        if not self._connected:
            raise StoreConnectionError("Not connected", operation=operation, collection=collection)
        pending = self._failures.get(operation)
        if pending:
            raise pending.popleft()

    def _load(
        self,
        collection: str,
        where: Optional[Sequence[WhereClause]],
        order_by: Optional[str],
        descending: bool,
    ) -> List[Document]:
        documents = [
            self._with_id(doc_id, doc)
            for doc_id, doc in self._collections[collection].items()
            if matches_where(doc, where)
        ]
        return sort_documents(documents, order_by, descending)

    @staticmethod
    def _with_id(doc_id: str, doc: Document) -> Document:
        return {"id": doc_id, **copy.deepcopy(doc)}

    # Testing helpers

    def inject_failure(
        self,
        operation: str,
        error: Optional[StoreError] = None,
        times: int = 1,
    ) -> None:
        """Make the next `times` calls of an operation raise (testing helper).

        Args:
            operation: Method name, e.g. "batch_write" or "query"
            error: Error to raise (a generic StoreError by default)
            times: Number of consecutive calls to fail
        """
        for _ in range(times):
            self._failures[operation].append(
                error or StoreError(f"Injected {operation} failure", operation=operation)
            )

    def load_documents(self, collection: str, documents: Dict[str, Document]) -> None:
        """Seed documents by id without notifying subscribers (testing helper)."""
        for doc_id, doc in documents.items():
            self._collections[collection][doc_id] = copy.deepcopy(doc)

    def document_count(self, collection: str) -> int:
        """Number of documents in a collection (testing helper)."""
        return len(self._collections.get(collection, {}))

    def active_subscription_count(self, collection: Optional[str] = None) -> int:
        """Number of live subscriptions (testing helper)."""
        return self._hub.active_count(collection)
