"""
Membership engine - composition root.

This module wires every component together:
- Document store (memory or SQLite)
- Activity monitor and live subscriptions
- Sync propagator
- Member and event services
- Spreadsheet importer

Configuration is entirely via environment variables.
See config.py for all available settings.

Invariants:
    - The store is connected before any component touches it
    - The propagator reads collections through the live subscription caches
    - The activity monitor is owned here; nothing else creates one

How to change safely:
    - Add new components in start() and tear them down in stop(), in
      reverse order
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Dict, Optional

import json_log_formatter

from .config import EngineSettings, load_settings
from .errors import MmsError
from .importer import (
    ImportMode,
    ImportSummary,
    MemberImporter,
    ParseResult,
    ProgressCallback,
    export_members,
    parse_member_rows,
    read_member_rows,
)
from .live import ActivityMonitor, SubscriptionManager
from .model import Member
from .repository import EventService, MemberService
from .store import DocumentStore, create_document_store
from .sync import SyncPropagator

logger = logging.getLogger(__name__)


@dataclass
class ExportResult:
    """Outcome of a spreadsheet export. Store failures arrive in error."""

    path: str
    count: int = 0
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.error is None


@dataclass
class BackupResult:
    """Outcome of a JSON backup.

    Attributes:
        directory: Dated folder the collection files were written to
        counts: Documents written, by collection name
        error: Error message if a collection could not be read
    """

    directory: str
    counts: Dict[str, int] = field(default_factory=dict)
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.error is None


def setup_logging(settings: EngineSettings) -> None:
    """Configure logging based on configuration.

    Args:
        settings: Engine settings
    """
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    if settings.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("openpyxl").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)


class MembershipDashboard:
    """Engine orchestrator.

    Attributes:
        settings: Engine settings
        store: Document store
        activity: Activity monitor gating the live queries
        subscriptions: Members and events live queries
        propagator: Cross-collection consistency
        members: Member service
        events: Event service
        importer: Spreadsheet importer

    Example:
        >>> dashboard = MembershipDashboard()
        >>> await dashboard.start()
        >>> await dashboard.events.create_event({"name": "ISS 1", "date": "2024-05-01", "type": "ISS"})
        >>> await dashboard.stop()
    """

    def __init__(
        self,
        settings: Optional[EngineSettings] = None,
        store: Optional[DocumentStore] = None,
    ) -> None:
        """Initialize the dashboard.

        Args:
            settings: Optional settings (loaded from env if not provided)
            store: Optional pre-built store (created from settings if not provided)
        """
        self.settings = settings or load_settings()
        self._store = store
        self._running = False

        # Components (initialized in start())
        self.store: Optional[DocumentStore] = None
        self.activity: Optional[ActivityMonitor] = None
        self.subscriptions: Optional[SubscriptionManager] = None
        self.propagator: Optional[SyncPropagator] = None
        self.members: Optional[MemberService] = None
        self.events: Optional[EventService] = None
        self.importer: Optional[MemberImporter] = None

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self, live: bool = True) -> None:
        """Connect the store and build every component.

        Args:
            live: Open the push subscriptions right away
        """
        if self._running:
            logger.warning("Dashboard already running")
            return

        logger.info("Starting membership engine")
        self.settings.log_config()

        self.store = self._store or create_document_store(self.settings)
        await self.store.connect()

        self.activity = ActivityMonitor(inactivity_delay=self.settings.inactivity_delay_seconds)
        self.subscriptions = SubscriptionManager(
            self.store,
            members_collection=self.settings.members_collection,
            events_collection=self.settings.events_collection,
            fetch_cooldown=self.settings.fetch_cooldown_seconds,
            activity=self.activity,
        )
        self.propagator = SyncPropagator(
            self.store,
            members_source=self.subscriptions.members,
            events_source=self.subscriptions.events,
            members_collection=self.settings.members_collection,
            events_collection=self.settings.events_collection,
            batch_limit=self.settings.batch_limit,
        )
        self.members = MemberService(self.store, self.propagator, self.settings.members_collection)
        self.events = EventService(self.store, self.propagator, self.settings.events_collection)
        self.importer = MemberImporter(
            self.store,
            collection=self.settings.members_collection,
            concurrency=self.settings.import_concurrency,
        )

        if live:
            self.subscriptions.start()

        self._running = True
        logger.info("Membership engine started")

    async def stop(self) -> None:
        """Tear everything down."""
        if not self._running:
            return

        logger.info("Stopping membership engine")
        if self.subscriptions:
            self.subscriptions.close()
        if self.activity:
            self.activity.close()
        if self.store:
            await self.store.close()

        self._running = False
        logger.info("Membership engine stopped")

    async def __aenter__(self) -> MembershipDashboard:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()

    def _require_running(self) -> None:
        if not self._running:
            raise RuntimeError("MembershipDashboard.start() has not been called")

    async def import_file(
        self,
        path: str | Path,
        mode: ImportMode | str = ImportMode.FULL,
        dry_run: bool = False,
        on_progress: Optional[ProgressCallback] = None,
    ) -> tuple[ParseResult, Optional[ImportSummary]]:
        """Parse a spreadsheet and upsert its valid rows.

        Args:
            path: xlsx file
            mode: full or partial
            dry_run: Validate only; nothing is written
            on_progress: Progress callback forwarded to the importer

        Returns:
            (parse result, import summary or None on a dry run)
        """
        self._require_running()
        parsed = parse_member_rows(read_member_rows(path), mode)
        if dry_run:
            return parsed, None
        summary = await self.importer.import_members(parsed.valid, on_progress=on_progress)
        return parsed, summary

    async def export_file(self, path: str | Path) -> ExportResult:
        """Export every member, ordered by full name, to an xlsx file."""
        self._require_running()
        try:
            documents = await self.subscriptions.members.ensure_loaded()
        except MmsError as e:
            logger.error(f"Export failed: {e.message}", extra={"code": e.code})
            return ExportResult(path=str(path), error=e.message)
        count = export_members([Member.from_document(d) for d in documents], path)
        return ExportResult(path=str(path), count=count)

    async def backup(self, directory: str | Path, today: Optional[date] = None) -> BackupResult:
        """Dump the members and events collections as JSON.

        Each collection goes to <directory>/<YYYY-MM-DD>/<collection>.json as
        an object keyed by document id. A second backup on the same day
        overwrites the first.

        Args:
            directory: Root backup folder, created if missing
            today: Date used for the folder name (defaults to today)

        Returns:
            BackupResult; on a store error the collections read so far are
            already on disk
        """
        self._require_running()
        target = Path(directory) / (today or date.today()).isoformat()
        target.mkdir(parents=True, exist_ok=True)
        result = BackupResult(directory=str(target))

        for collection in (self.settings.members_collection, self.settings.events_collection):
            try:
                documents = await self.store.query(collection)
            except MmsError as e:
                logger.error(
                    f"Backup of {collection} failed: {e.message}",
                    extra={"collection": collection, "code": e.code},
                )
                result.error = e.message
                return result

            data = {d["id"]: {k: v for k, v in d.items() if k != "id"} for d in documents}
            with open(target / f"{collection}.json", "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, default=str)
            result.counts[collection] = len(data)
            logger.info("Collection backed up", extra={"collection": collection, "documents": len(data)})

        return result
