"""
Chunked commit of write operations under the store's atomic-batch limit.

Invariants:
    - No chunk is larger than the limit (hard ceiling MAX_BATCH_OPERATIONS)
    - Chunks commit concurrently and independently; a failed chunk does not
      roll back the others
    - Store errors are counted per chunk, never raised
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Iterator, List, Sequence, TypeVar

from ..config import MAX_BATCH_OPERATIONS
from ..errors import MmsError, PartialBatchFailure
from ..store import DocumentStore, WriteOp

logger = logging.getLogger(__name__)

T = TypeVar("T")


def chunked(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    """Yield consecutive slices of at most `size` items."""
    if size < 1:
        raise ValueError(f"Chunk size must be positive, got {size}")
    for start in range(0, len(items), size):
        yield items[start : start + size]


@dataclass
class BatchOutcome:
    """Result of committing operations in chunks.

    Attributes:
        committed: Operations in chunks that committed
        total_chunks: Number of chunks issued
        failed_chunks: Number of chunks that failed
        errors: One message per failed chunk
    """

    committed: int = 0
    total_chunks: int = 0
    failed_chunks: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.failed_chunks == 0

    def to_error(self) -> PartialBatchFailure | None:
        if self.success:
            return None
        return PartialBatchFailure(self.failed_chunks, self.total_chunks, self.errors)


async def commit_in_chunks(
    store: DocumentStore,
    ops: Sequence[WriteOp],
    limit: int = MAX_BATCH_OPERATIONS,
) -> BatchOutcome:
    """Commit ops as independent atomic batches of at most `limit` ops.

    Args:
        store: Target store
        ops: Operations, committed in slices of `limit`
        limit: Chunk size, clamped to MAX_BATCH_OPERATIONS

    Returns:
        BatchOutcome counting committed operations and failed chunks
    """
    size = min(limit, MAX_BATCH_OPERATIONS)
    chunks = list(chunked(ops, size))
    outcome = BatchOutcome(total_chunks=len(chunks))
    if not chunks:
        return outcome

    async def commit(index: int, chunk: Sequence[WriteOp]) -> MmsError | None:
        try:
            await store.batch_write(chunk)
        except MmsError as e:
            logger.warning(
                f"Batch chunk {index + 1}/{len(chunks)} failed: {e.message}",
                extra={"chunk": index, "operations": len(chunk), "code": e.code},
            )
            return e
        return None

    results = await asyncio.gather(*(commit(i, c) for i, c in enumerate(chunks)))

    for chunk, error in zip(chunks, results):
        if error is None:
            outcome.committed += len(chunk)
        else:
            outcome.failed_chunks += 1
            outcome.errors.append(error.message)

    logger.debug(
        "Chunked commit finished",
        extra={
            "operations": len(ops),
            "chunks": outcome.total_chunks,
            "failed_chunks": outcome.failed_chunks,
        },
    )
    return outcome
