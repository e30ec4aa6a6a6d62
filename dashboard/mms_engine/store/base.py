"""
Base protocol and types for the document store abstraction.

This module defines the DocumentStore protocol every backend implements,
the write-operation type used by atomic batches, the field-deletion sentinel,
and the helpers backends share for patching, filtering, ordering and
snapshot delivery.

Invariants:
    - Documents are JSON-compatible dicts; reads include the ``id`` key
    - update() merges top-level keys; dotted keys address nested map entries
    - batch_write() applies all operations or none, and rejects more than
      MAX_BATCH_OPERATIONS operations
    - Snapshots always carry the full, ordered result of the subscribed query

How to change safely:
    - Protocol changes require updating every backend
    - Keep the batch limit aligned with the production store
"""

from __future__ import annotations

import copy
import logging
from abc import abstractmethod
from dataclasses import dataclass, field
from typing import (
    TYPE_CHECKING,
    Any,
    Callable,
    Dict,
    List,
    Optional,
    Protocol,
    Sequence,
    Tuple,
    runtime_checkable,
)

from ..config import MAX_BATCH_OPERATIONS
from ..errors import BatchLimitExceededError, StoreError

if TYPE_CHECKING:
    from ..config import EngineSettings

logger = logging.getLogger(__name__)

Document = Dict[str, Any]
WhereClause = Tuple[str, str, Any]
SnapshotCallback = Callable[[List[Document]], None]
ErrorCallback = Callable[[StoreError], None]
Unsubscribe = Callable[[], None]


class _DeleteField:
    """Sentinel removing a key when used as a value in update()."""

    _instance: Optional[_DeleteField] = None

    def __new__(cls) -> _DeleteField:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "DELETE_FIELD"


DELETE_FIELD = _DeleteField()


@dataclass(frozen=True)
class WriteOp:
    """One operation inside an atomic batch.

    Attributes:
        kind: "put", "update" or "delete"
        collection: Target collection
        doc_id: Target document id
        fields: Full document for put, partial fields for update
    """

    kind: str
    collection: str
    doc_id: str
    fields: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def put(cls, collection: str, doc_id: str, fields: Dict[str, Any]) -> WriteOp:
        return cls("put", collection, doc_id, fields)

    @classmethod
    def update(cls, collection: str, doc_id: str, fields: Dict[str, Any]) -> WriteOp:
        return cls("update", collection, doc_id, fields)

    @classmethod
    def delete(cls, collection: str, doc_id: str) -> WriteOp:
        return cls("delete", collection, doc_id)


@runtime_checkable
class DocumentStore(Protocol):
    """Protocol for document store backends.

    Consistency contract:
        - Single-document writes are atomic
        - batch_write() is atomic across at most MAX_BATCH_OPERATIONS documents
        - There are no multi-document transactions beyond batches, and no
          server-side uniqueness constraints except upsert_by_field()

    Example:
        >>> store = InMemoryDocumentStore()
        >>> await store.connect()
        >>> member_id = await store.put("members", {"fullName": "JANE"})
        >>> await store.update("members", member_id, {"ncsAttended": 2})
    """

    @abstractmethod
    async def connect(self) -> None:
        """Open the backend. Must be called before any other operation."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release resources and cancel every live subscription."""
        ...

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> Optional[Document]:
        """Read one document, None if it does not exist."""
        ...

    @abstractmethod
    async def query(
        self,
        collection: str,
        where: Optional[Sequence[WhereClause]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> List[Document]:
        """Read every document matching all where clauses, ordered."""
        ...

    @abstractmethod
    def subscribe(
        self,
        collection: str,
        on_snapshot: SnapshotCallback,
        on_error: Optional[ErrorCallback] = None,
        where: Optional[Sequence[WhereClause]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> Unsubscribe:
        """Open a push subscription.

        The initial snapshot is delivered before this returns; later
        snapshots follow every committed write to the collection.

        Returns:
            Callable cancelling the subscription (safe to call twice)
        """
        ...

    @abstractmethod
    async def put(
        self,
        collection: str,
        fields: Dict[str, Any],
        doc_id: Optional[str] = None,
    ) -> str:
        """Create or replace a document, generating an id when not given."""
        ...

    @abstractmethod
    async def update(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> None:
        """Merge fields into an existing document.

        Raises:
            NotFoundError: If the document does not exist
        """
        ...

    @abstractmethod
    async def delete(self, collection: str, doc_id: str) -> None:
        """Delete a document; deleting a missing document is a no-op."""
        ...

    @abstractmethod
    async def batch_write(self, ops: Sequence[WriteOp]) -> None:
        """Apply all operations atomically.

        Raises:
            BatchLimitExceededError: If more than MAX_BATCH_OPERATIONS ops
            StoreError: If any operation fails; nothing is applied
        """
        ...

    @abstractmethod
    async def upsert_by_field(
        self,
        collection: str,
        field_name: str,
        value: Any,
        fields: Dict[str, Any],
        defaults: Optional[Dict[str, Any]] = None,
    ) -> Tuple[str, bool]:
        """Atomically update the document whose field equals value, or create it.

        Args:
            collection: Target collection
            field_name: Natural-key field to match on
            value: Natural-key value
            fields: Fields merged on update and written on create
            defaults: Fields written only when creating

        Returns:
            (document id, True if created)
        """
        ...

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Whether connect() has been called and close() has not."""
        ...


def check_batch_size(ops: Sequence[WriteOp]) -> None:
    """Reject batches over the hard limit."""
    if len(ops) > MAX_BATCH_OPERATIONS:
        raise BatchLimitExceededError(len(ops), MAX_BATCH_OPERATIONS)


def apply_patch(document: Document, fields: Dict[str, Any]) -> Document:
    """Return a copy of document with fields merged in.

    Dotted keys ("attendance.m1") walk into nested maps, creating them as
    needed. DELETE_FIELD removes the addressed key.
    """
    result = copy.deepcopy(document)
    for key, value in fields.items():
        parts = key.split(".")
        target = result
        for part in parts[:-1]:
            child = target.get(part)
            if not isinstance(child, dict):
                if value is DELETE_FIELD:
                    target = None
                    break
                child = {}
                target[part] = child
            target = child
        if target is None:
            continue
        if value is DELETE_FIELD:
            target.pop(parts[-1], None)
        else:
            target[parts[-1]] = copy.deepcopy(value)
    return result


def lookup(document: Document, path: str) -> Any:
    """Read a possibly dotted field path, None when missing."""
    value: Any = document
    for part in path.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


def matches_where(document: Document, where: Optional[Sequence[WhereClause]]) -> bool:
    """Evaluate where clauses ("==", "!=", "in") against a document."""
    for field_path, op, expected in where or ():
        actual = lookup(document, field_path)
        if op == "==":
            if actual != expected:
                return False
        elif op == "!=":
            if actual == expected:
                return False
        elif op == "in":
            if actual not in expected:
                return False
        else:
            raise ValueError(f"Unsupported where operator: {op}")
    return True


def _sort_value(value: Any) -> Tuple[int, Any]:
    if value is None:
        return (2, "")
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return (0, value)
    return (1, str(value))


def sort_documents(
    documents: List[Document],
    order_by: Optional[str],
    descending: bool = False,
) -> List[Document]:
    """Order documents by a field; missing values sort last."""
    if not order_by:
        return documents
    present = [d for d in documents if lookup(d, order_by) is not None]
    missing = [d for d in documents if lookup(d, order_by) is None]
    present.sort(key=lambda d: _sort_value(lookup(d, order_by)), reverse=descending)
    return present + missing


@dataclass
class _Subscription:
    sub_id: int
    collection: str
    on_snapshot: SnapshotCallback
    on_error: Optional[ErrorCallback]
    where: Optional[Sequence[WhereClause]]
    order_by: Optional[str]
    descending: bool
    active: bool = True


class SubscriptionHub:
    """Tracks push subscriptions and delivers snapshots for a backend.

    The backend supplies a synchronous loader returning the current result of
    a query; the hub calls it after every committed write.
    """

    def __init__(
        self,
        loader: Callable[[str, Optional[Sequence[WhereClause]], Optional[str], bool], List[Document]],
    ) -> None:
        self._loader = loader
        self._subscriptions: Dict[int, _Subscription] = {}
        self._next_id = 0

    def add(
        self,
        collection: str,
        on_snapshot: SnapshotCallback,
        on_error: Optional[ErrorCallback],
        where: Optional[Sequence[WhereClause]],
        order_by: Optional[str],
        descending: bool,
    ) -> Unsubscribe:
        self._next_id += 1
        sub = _Subscription(
            sub_id=self._next_id,
            collection=collection,
            on_snapshot=on_snapshot,
            on_error=on_error,
            where=where,
            order_by=order_by,
            descending=descending,
        )
        self._subscriptions[sub.sub_id] = sub
        logger.debug("Subscription opened", extra={"collection": collection, "sub_id": sub.sub_id})
        self._deliver(sub)

        def unsubscribe() -> None:
            sub.active = False
            if self._subscriptions.pop(sub.sub_id, None) is not None:
                logger.debug(
                    "Subscription cancelled",
                    extra={"collection": collection, "sub_id": sub.sub_id},
                )

        return unsubscribe

    def notify(self, collections: Sequence[str]) -> None:
        """Deliver fresh snapshots to every subscriber of the collections."""
        touched = set(collections)
        for sub in list(self._subscriptions.values()):
            if sub.collection in touched:
                self._deliver(sub)

    def active_count(self, collection: Optional[str] = None) -> int:
        return sum(
            1
            for sub in self._subscriptions.values()
            if collection is None or sub.collection == collection
        )

    def clear(self) -> None:
        for sub in self._subscriptions.values():
            sub.active = False
        self._subscriptions.clear()

    def _deliver(self, sub: _Subscription) -> None:
        if not sub.active:
            return
        try:
            documents = self._loader(sub.collection, sub.where, sub.order_by, sub.descending)
        except StoreError as e:
            logger.warning(
                f"Snapshot load failed: {e}",
                extra={"collection": sub.collection, "sub_id": sub.sub_id},
            )
            if sub.on_error is not None:
                sub.on_error(e)
            return

        try:
            sub.on_snapshot(documents)
        except Exception:
            logger.exception(
                "Snapshot listener raised",
                extra={"collection": sub.collection, "sub_id": sub.sub_id},
            )


def create_document_store(settings: "EngineSettings") -> DocumentStore:
    """Factory function to create a document store from configuration.

    Raises:
        ValueError: If backend is not supported
    """
    from ..config import StoreBackend
    from .memory import InMemoryDocumentStore
    from .sqlite import SqliteDocumentStore

    if settings.store_backend == StoreBackend.MEMORY:
        return InMemoryDocumentStore()
    elif settings.store_backend == StoreBackend.SQLITE:
        return SqliteDocumentStore(
            settings.database_path,
            busy_timeout_ms=settings.busy_timeout_ms,
        )
    else:
        raise ValueError(f"Unsupported store backend: {settings.store_backend}")
