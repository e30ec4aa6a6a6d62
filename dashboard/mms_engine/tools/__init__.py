"""
CLI tools for membership administration.

This module provides the `mms` command for:
- import: Bulk member upsert from a spreadsheet
- export: Spreadsheet export with derived eligibility columns
- backfill-ncs-totals: One-off counter migration

Invariants:
    - Tools run against the store configured by MMS_* variables
    - Operations are idempotent where possible
"""

from .member_cli import MemberCLI, main

__all__ = ["MemberCLI", "main"]
