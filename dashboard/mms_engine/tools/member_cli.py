"""
Member administration CLI.

Commands:
- import: Validate a spreadsheet and upsert its members
- export: Write every member to a spreadsheet
- backfill-ncs-totals: Populate ncsTotalAttended where it is missing
- backup: Dump the members and events collections as JSON

Usage:
    mms import members.xlsx --mode partial
    mms import members.xlsx --dry-run
    mms export members_export.xlsx
    mms backfill-ncs-totals
    mms backup backups/

Invariants:
    - Exit code is 0 only when every row and every chunk succeeded
    - --dry-run never writes to the store
    - Store location comes from MMS_* environment variables

How to change safely:
    - Add new commands, don't modify existing ones
    - Keep output format stable; operators grep it
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import Optional, Sequence

from ..config import EngineSettings, load_settings
from ..importer import ImportMode, ImportProgress
from ..main import MembershipDashboard, setup_logging

logger = logging.getLogger(__name__)


class MemberCLI:
    """Runs CLI commands against a started dashboard.

    Example:
        >>> cli = MemberCLI(settings)
        >>> exit_code = await cli.import_members("members.xlsx", ImportMode.FULL, dry_run=True)
    """

    def __init__(self, settings: EngineSettings, out=None) -> None:
        self.settings = settings
        self.out = out or sys.stdout

    def _print(self, text: str) -> None:
        print(text, file=self.out)

    async def import_members(self, path: str, mode: ImportMode, dry_run: bool = False) -> int:
        async with MembershipDashboard(self.settings) as dashboard:
            last_reported = -1

            def report(progress: ImportProgress) -> None:
                nonlocal last_reported
                if progress.percentage // 10 > last_reported // 10:
                    last_reported = progress.percentage
                    self._print(f"  {progress.current}/{progress.total} ({progress.percentage}%)")

            parsed, summary = await dashboard.import_file(path, mode, dry_run, on_progress=report)

        self._print(
            f"Parsed {parsed.total_rows} row(s): "
            f"{len(parsed.valid)} valid, {len(parsed.invalid)} invalid"
        )
        for invalid in parsed.invalid:
            self._print(f"  row {invalid.row}: {'; '.join(invalid.errors)}")

        if summary is None:
            self._print("Dry run, nothing written")
            return 1 if parsed.invalid else 0

        self._print(
            f"Imported: {len(summary.added)} added, {len(summary.updated)} updated, "
            f"{len(summary.failed)} failed"
        )
        for failure in summary.failed:
            self._print(f"  row {failure.row} ({failure.campus_id}): {failure.error}")
        return 1 if parsed.invalid or summary.failed else 0

    async def export_members(self, path: str) -> int:
        async with MembershipDashboard(self.settings) as dashboard:
            result = await dashboard.export_file(path)
        if not result.success:
            self._print(f"Export failed: {result.error}")
            return 1
        self._print(f"Exported {result.count} member(s) to {path}")
        return 0

    async def backup(self, directory: str) -> int:
        async with MembershipDashboard(self.settings) as dashboard:
            result = await dashboard.backup(directory)
        for collection, count in result.counts.items():
            self._print(f"  {collection}: {count} document(s)")
        if not result.success:
            self._print(f"Backup failed: {result.error}")
            return 1
        self._print(f"Backed up to {result.directory}")
        return 0

    async def backfill_ncs_totals(self) -> int:
        async with MembershipDashboard(self.settings) as dashboard:
            result = await dashboard.propagator.backfill_ncs_totals()
        if result.success:
            self._print(f"Backfilled ncsTotalAttended on {result.updated} member(s)")
            return 0
        self._print(
            f"Backfill incomplete: {result.updated} updated, "
            f"{result.failed_chunks}/{result.total_chunks} chunk(s) failed: {result.error}"
        )
        return 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="mms", description="Membership engine administration tool")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # import command
    import_parser = subparsers.add_parser("import", help="Import members from an xlsx file")
    import_parser.add_argument("file", help="Spreadsheet to import")
    import_parser.add_argument(
        "--mode",
        choices=[m.value for m in ImportMode],
        default=ImportMode.FULL.value,
        help="full requires every mandatory column; partial updates present columns only",
    )
    import_parser.add_argument("--dry-run", action="store_true", help="Validate without writing")

    # export command
    export_parser = subparsers.add_parser("export", help="Export members to an xlsx file")
    export_parser.add_argument("file", help="Destination spreadsheet")

    # backfill command
    subparsers.add_parser(
        "backfill-ncs-totals",
        help="Populate ncsTotalAttended on members missing it",
    )

    # backup command
    backup_parser = subparsers.add_parser("backup", help="Dump members and events to dated JSON files")
    backup_parser.add_argument("directory", help="Root backup folder")
    return parser


def main(argv: Optional[Sequence[str]] = None, settings: Optional[EngineSettings] = None) -> None:
    """CLI entry point."""
    args = build_parser().parse_args(argv)

    try:
        settings = settings or load_settings()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(settings)
    cli = MemberCLI(settings)

    if args.command == "import":
        code = asyncio.run(cli.import_members(args.file, ImportMode(args.mode), args.dry_run))
    elif args.command == "export":
        code = asyncio.run(cli.export_members(args.file))
    elif args.command == "backfill-ncs-totals":
        code = asyncio.run(cli.backfill_ncs_totals())
    elif args.command == "backup":
        code = asyncio.run(cli.backup(args.directory))
    else:
        code = 2

    sys.exit(code)


if __name__ == "__main__":
    main()
