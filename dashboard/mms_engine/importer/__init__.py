"""
Import reconciler: spreadsheet rows in, upserted members out.

This module handles:
- Row validation and normalization (full and partial modes)
- In-batch Campus ID deduplication
- Atomic per-member upsert with progress reporting
- xlsx reading and exporting

Invariants:
    - A bad row is reported, never fatal to the batch
    - Upsert goes through the store's find-or-create primitive

How to change safely:
    - Keep import and export headers aligned so exports re-import cleanly
"""

from .reconciler import (
    ImportProgress,
    ImportSummary,
    MemberImporter,
    ProgressCallback,
    RowOutcome,
)
from .rows import (
    ImportMode,
    InvalidRow,
    MemberDraft,
    ParseResult,
    parse_member_row,
    parse_member_rows,
)
from .spreadsheet import export_members, member_export_row, read_member_rows

__all__ = [
    # Parsing
    "ImportMode",
    "MemberDraft",
    "InvalidRow",
    "ParseResult",
    "parse_member_row",
    "parse_member_rows",
    # Upsert
    "MemberImporter",
    "ImportProgress",
    "ProgressCallback",
    "ImportSummary",
    "RowOutcome",
    # Spreadsheets
    "read_member_rows",
    "export_members",
    "member_export_row",
]
