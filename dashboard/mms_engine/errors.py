"""
Error types for the membership engine.

This module defines the exception taxonomy used across the engine:
- MmsError: Base exception
- ValidationError: Row or payload failed validation
- ConflictError: Natural key or event identity already taken
- NotFoundError: Document does not exist
- StoreError: Transport or permission failure from the document store
- PartialBatchFailure: Some chunks of a multi-chunk write failed

Invariants:
    - All errors inherit from MmsError
    - Errors include context for debugging in `details`
    - Component operations catch these at their public boundary and return
      result objects carrying the message; only programmer errors propagate
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class MmsError(Exception):
    """Base exception for all engine errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "MMS_ERROR"
        self.details = details or {}


class ValidationError(MmsError):
    """A row or payload failed validation.

    Raised when:
    - Required field is missing
    - Enumerated value is not recognised
    - Email or year has the wrong format
    """

    def __init__(
        self,
        message: str,
        field_name: Optional[str] = None,
        errors: Optional[List[str]] = None,
    ) -> None:
        super().__init__(
            message,
            code="VALIDATION_ERROR",
            details={"field": field_name, "errors": errors or []},
        )
        self.field_name = field_name
        self.errors = errors or []


class ConflictError(MmsError):
    """A uniqueness invariant would be violated.

    Raised when:
    - A Campus ID is already used by another member
    - A Campus ID repeats within one import batch
    - Another event already has the same name and date
    """

    def __init__(
        self,
        message: str,
        key: Optional[str] = None,
        existing_id: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code="CONFLICT",
            details={"key": key, "existing_id": existing_id},
        )
        self.key = key
        self.existing_id = existing_id


class NotFoundError(MmsError):
    """Document not found."""

    def __init__(self, message: str, collection: str, doc_id: str) -> None:
        super().__init__(
            message,
            code="NOT_FOUND",
            details={"collection": collection, "doc_id": doc_id},
        )
        self.collection = collection
        self.doc_id = doc_id


class StoreError(MmsError):
    """Read, write or subscribe call against the document store failed."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        collection: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code="STORE_ERROR",
            details={"operation": operation, "collection": collection},
        )
        self.operation = operation
        self.collection = collection


class StoreConnectionError(StoreError):
    """The store is unreachable or has been closed."""

    pass


class BatchLimitExceededError(StoreError):
    """A batch write carried more operations than the store accepts."""

    def __init__(self, size: int, limit: int) -> None:
        super().__init__(
            f"Batch of {size} operations exceeds the limit of {limit}",
            operation="batch_write",
        )
        self.size = size
        self.limit = limit


class PartialBatchFailure(MmsError):
    """One or more chunks of a multi-chunk propagation failed to commit.

    Already-committed chunks are not rolled back.
    """

    def __init__(self, failed_chunks: int, total_chunks: int, errors: Optional[List[str]] = None) -> None:
        super().__init__(
            f"{failed_chunks} of {total_chunks} batch chunks failed to commit",
            code="PARTIAL_BATCH_FAILURE",
            details={
                "failed_chunks": failed_chunks,
                "total_chunks": total_chunks,
                "errors": errors or [],
            },
        )
        self.failed_chunks = failed_chunks
        self.total_chunks = total_chunks
        self.errors = errors or []
