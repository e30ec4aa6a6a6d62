"""
Sync propagator: keeps the members and events collections consistent.

This module handles:
- Event rename/reschedule propagation into member history
- Event deletion cleanup with counter decrements
- Member deletion cascade through event attendance maps
- Two-sided attendance recording
- Chunked commits under the 500-operation batch limit

Invariants:
    - Propagation is idempotent and safe to retry after partial failure
    - Committed chunks are never rolled back

How to change safely:
    - Test every new propagation with a failing chunk and a retry
"""

from .batching import BatchOutcome, chunked, commit_in_chunks
from .propagator import (
    CollectionSource,
    PropagationResult,
    StoreCollectionSource,
    SyncPropagator,
    counter_updates,
    entry_matches,
)

__all__ = [
    "SyncPropagator",
    "PropagationResult",
    "CollectionSource",
    "StoreCollectionSource",
    "entry_matches",
    "counter_updates",
    "BatchOutcome",
    "chunked",
    "commit_in_chunks",
]
