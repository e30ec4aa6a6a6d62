"""
Document store abstraction for the membership engine.

This module provides a pluggable repository interface supporting:
- SQLite (single-file, durable)
- In-memory (for testing and local development)

Members and events are schemaless JSON documents addressed by
(collection, id). The engine never relies on server-side transactions beyond
atomic batches of at most 500 operations.

Invariants:
    - batch_write() is all-or-nothing and bounded by MAX_BATCH_OPERATIONS
    - upsert_by_field() is the only uniqueness primitive
    - Subscribers receive a full snapshot after every committed write

How to change safely:
    - New backends must implement the DocumentStore protocol
    - Run the store contract tests against every backend
"""

from .base import (
    DELETE_FIELD,
    Document,
    DocumentStore,
    Unsubscribe,
    WhereClause,
    WriteOp,
    apply_patch,
    create_document_store,
    lookup,
)
from .memory import InMemoryDocumentStore
from .sqlite import SqliteDocumentStore

__all__ = [
    # Protocol and types
    "DocumentStore",
    "Document",
    "WhereClause",
    "WriteOp",
    "Unsubscribe",
    "DELETE_FIELD",
    # Helpers
    "apply_patch",
    "lookup",
    # Factory
    "create_document_store",
    # Implementations
    "InMemoryDocumentStore",
    "SqliteDocumentStore",
]
