"""
Upsert of parsed member drafts against the store.

Every draft is matched on Campus ID through the store's atomic
find-or-create primitive, so two imports running at once cannot create two
members with the same natural key.

Invariants:
    - One failing row never aborts the batch; failures are collected
    - Progress is reported once per finished row, in completion order
    - `defaults` are written only when the member is created

How to change safely:
    - Keep concurrency bounded; the store serializes writes anyway
    - Do not replace upsert_by_field() with a query followed by put()
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, List, Optional, Sequence

from ..errors import MmsError
from ..store import DocumentStore
from .rows import MemberDraft

logger = logging.getLogger(__name__)

STATUS_ADDED = "added"
STATUS_UPDATED = "updated"
STATUS_FAILED = "failed"


@dataclass(frozen=True)
class ImportProgress:
    """Progress notification sent after each finished row."""

    current: int
    total: int
    percentage: int


ProgressCallback = Callable[[ImportProgress], None]


@dataclass
class RowOutcome:
    """What happened to one draft.

    Attributes:
        row: Spreadsheet row number
        campus_id: Natural key of the draft
        status: "added", "updated" or "failed"
        member_id: Store id of the written member
        error: Failure message when status is "failed"
    """

    row: int
    campus_id: str
    status: str
    member_id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class ImportSummary:
    """Aggregate result of one import run."""

    outcomes: List[RowOutcome] = field(default_factory=list)

    @property
    def added(self) -> List[RowOutcome]:
        return [o for o in self.outcomes if o.status == STATUS_ADDED]

    @property
    def updated(self) -> List[RowOutcome]:
        return [o for o in self.outcomes if o.status == STATUS_UPDATED]

    @property
    def failed(self) -> List[RowOutcome]:
        return [o for o in self.outcomes if o.status == STATUS_FAILED]

    @property
    def success(self) -> bool:
        return not self.failed

    def to_dict(self) -> dict:
        return {
            "added": len(self.added),
            "updated": len(self.updated),
            "failed": [{"row": o.row, "campusId": o.campus_id, "error": o.error} for o in self.failed],
        }


def progress_percentage(current: int, total: int) -> int:
    """Percentage rounded half up."""
    if total <= 0:
        return 100
    return (200 * current + total) // (2 * total)


class MemberImporter:
    """Writes member drafts into the members collection.

    Example:
        >>> parsed = parse_member_rows(rows, ImportMode.FULL)
        >>> importer = MemberImporter(store)
        >>> summary = await importer.import_members(parsed.valid, on_progress=print)
        >>> len(summary.added), len(summary.updated)
    """

    def __init__(
        self,
        store: DocumentStore,
        collection: str = "members",
        concurrency: int = 10,
    ) -> None:
        self.store = store
        self.collection = collection
        self.concurrency = max(1, concurrency)

    async def import_members(
        self,
        drafts: Sequence[MemberDraft],
        on_progress: Optional[ProgressCallback] = None,
    ) -> ImportSummary:
        """Upsert every draft, tagging each as added, updated or failed.

        Args:
            drafts: Valid drafts from parse_member_rows()
            on_progress: Called after each row with {current, total, percentage}

        Returns:
            ImportSummary with one outcome per draft, in draft order
        """
        total = len(drafts)
        semaphore = asyncio.Semaphore(self.concurrency)
        completed = 0

        async def run(draft: MemberDraft) -> RowOutcome:
            nonlocal completed
            async with semaphore:
                outcome = await self._upsert(draft)
            completed += 1
            if on_progress is not None:
                on_progress(ImportProgress(completed, total, progress_percentage(completed, total)))
            return outcome

        outcomes = await asyncio.gather(*(run(d) for d in drafts))
        summary = ImportSummary(outcomes=list(outcomes))

        logger.info(
            "Member import finished",
            extra={
                "total": total,
                "added": len(summary.added),
                "updated": len(summary.updated),
                "failed": len(summary.failed),
            },
        )
        return summary

    async def _upsert(self, draft: MemberDraft) -> RowOutcome:
        now = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
        try:
            member_id, created = await self.store.upsert_by_field(
                self.collection,
                "campusId",
                draft.campus_id,
                {**draft.fields, "updatedAt": now},
                defaults={**draft.defaults, "createdAt": now},
            )
        except MmsError as e:
            logger.warning(
                f"Import of row {draft.row} failed: {e.message}",
                extra={"row": draft.row, "campus_id": draft.campus_id, "code": e.code},
            )
            return RowOutcome(draft.row, draft.campus_id, STATUS_FAILED, error=e.message)

        status = STATUS_ADDED if created else STATUS_UPDATED
        logger.debug(
            f"Member {status}",
            extra={"row": draft.row, "campus_id": draft.campus_id, "member_id": member_id},
        )
        return RowOutcome(draft.row, draft.campus_id, status, member_id=member_id)
