"""
Live-query lifecycle for the members and events collections.

Each collection has a CollectionSubscription that keeps an in-memory copy
of the collection, fed either by a push subscription (LIVE) or by throttled
one-shot fetches.

State machine:
    STOPPED --start()--> LIVE
    LIVE --stop()--> STOPPED
    LIVE --DISCONNECT--> IDLE
    IDLE --RECONNECT--> LIVE
    IDLE --stop()--> STOPPED

Invariants:
    - At most one push subscription per collection at any time
    - A snapshot replaces the whole cache and stamps last_sync
    - Store failures land in `error`; they are never raised from start(),
      fetch() or snapshot delivery
    - RECONNECT only restarts subscriptions that DISCONNECT parked; an
      explicit stop() is never undone by activity

How to change safely:
    - The cache is mutated only here; readers must treat it as read-only
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, List, Optional, Sequence

from ..eligibility import MemberFilter, MemberStats
from ..errors import MmsError, StoreError
from ..model import Event, EventType, Member
from ..store import Document, DocumentStore, Unsubscribe, WhereClause
from .activity import ActivityMonitor, ActivitySignal, ObserverHandle

logger = logging.getLogger(__name__)

DEFAULT_FETCH_COOLDOWN = 2 * 60.0


class SubscriptionState(str, Enum):
    STOPPED = "stopped"
    LIVE = "live"
    IDLE = "idle"


class CollectionSubscription:
    """Cached view of one collection with push and pull refresh.

    Attributes:
        documents: Current cache, replaced on every snapshot or fetch
        state: STOPPED, LIVE or IDLE
        error: Last store error message, None after a good refresh
        last_sync: When the cache was last replaced
    """

    def __init__(
        self,
        store: DocumentStore,
        collection: str,
        order_by: Optional[str] = None,
        descending: bool = False,
        where: Optional[Sequence[WhereClause]] = None,
        fetch_cooldown: float = DEFAULT_FETCH_COOLDOWN,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the subscription (nothing is opened yet).

        Args:
            store: Document store
            collection: Collection to mirror
            order_by: Field ordering the cache
            descending: Reverse the ordering
            where: Optional filter clauses
            fetch_cooldown: Seconds between unforced fetches
            clock: Monotonic clock, injectable for tests
        """
        self.store = store
        self.collection = collection
        self.order_by = order_by
        self.descending = descending
        self.where = where
        self.fetch_cooldown = fetch_cooldown
        self._clock = clock

        self.documents: List[Document] = []
        self.state = SubscriptionState.STOPPED
        self.error: Optional[str] = None
        self.last_sync: Optional[datetime] = None
        self._unsubscribe: Optional[Unsubscribe] = None
        self._last_fetch: Optional[float] = None

    @property
    def is_live(self) -> bool:
        return self.state == SubscriptionState.LIVE

    @property
    def loaded(self) -> bool:
        return self.last_sync is not None

    def start(self) -> None:
        """Open the push subscription; no-op when already live."""
        if self.state == SubscriptionState.LIVE:
            return

        self.error = None
        try:
            self._unsubscribe = self.store.subscribe(
                self.collection,
                self._on_snapshot,
                self._on_error,
                where=self.where,
                order_by=self.order_by,
                descending=self.descending,
            )
        except MmsError as e:
            logger.warning(f"Could not subscribe to {self.collection}: {e.message}")
            self.error = e.message
            return

        self.state = SubscriptionState.LIVE
        logger.info(f"Live query started: {self.collection}")

    def stop(self) -> None:
        """Cancel the push subscription and move to STOPPED."""
        self._cancel()
        self.state = SubscriptionState.STOPPED

    def on_activity(self, signal: ActivitySignal) -> None:
        """React to an activity signal."""
        if signal == ActivitySignal.DISCONNECT and self.state == SubscriptionState.LIVE:
            self._cancel()
            self.state = SubscriptionState.IDLE
            logger.info(f"Live query parked: {self.collection}")
        elif signal == ActivitySignal.RECONNECT and self.state == SubscriptionState.IDLE:
            self.start()

    async def fetch(self, force: bool = False) -> bool:
        """One-shot read of the collection.

        Skipped, leaving the cache as is, when the previous successful fetch
        is younger than the cooldown and `force` is not set.

        Returns:
            True if the cache was refreshed
        """
        now = self._clock()
        if not force and self._last_fetch is not None and now - self._last_fetch < self.fetch_cooldown:
            logger.debug(
                f"Fetch of {self.collection} throttled",
                extra={"seconds_since_fetch": now - self._last_fetch},
            )
            return False

        try:
            documents = await self.store.query(
                self.collection,
                where=self.where,
                order_by=self.order_by,
                descending=self.descending,
            )
        except MmsError as e:
            logger.warning(f"Fetch of {self.collection} failed: {e.message}")
            self.error = e.message
            return False

        self._last_fetch = now
        self._replace(documents)
        return True

    async def ensure_loaded(self) -> List[Document]:
        """Return the full collection.

        While LIVE the cache is current and returned as is. Otherwise the
        collection is read afresh, bypassing the fetch cooldown.

        Raises:
            StoreError: If a read was needed and failed
        """
        if not (self.is_live and self.loaded) and not await self.fetch(force=True):
            raise StoreError(
                self.error or f"Could not load {self.collection}",
                operation="query",
                collection=self.collection,
            )
        return self.documents

    def _cancel(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def _replace(self, documents: List[Document]) -> None:
        self.documents = documents
        self.last_sync = datetime.now(timezone.utc)
        self.error = None

    def _on_snapshot(self, documents: List[Document]) -> None:
        self._replace(documents)

    def _on_error(self, error: StoreError) -> None:
        self.error = error.message


class SubscriptionManager:
    """Owns the members and events subscriptions.

    Members are ordered by full name, events by date, newest first.

    Example:
        >>> manager = SubscriptionManager(store, activity=monitor)
        >>> manager.start()
        >>> manager.member_stats().total
    """

    def __init__(
        self,
        store: DocumentStore,
        members_collection: str = "members",
        events_collection: str = "events",
        fetch_cooldown: float = DEFAULT_FETCH_COOLDOWN,
        activity: Optional[ActivityMonitor] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.members = CollectionSubscription(
            store,
            members_collection,
            order_by="fullName",
            fetch_cooldown=fetch_cooldown,
            clock=clock,
        )
        self.events = CollectionSubscription(
            store,
            events_collection,
            order_by="date",
            descending=True,
            fetch_cooldown=fetch_cooldown,
            clock=clock,
        )
        self._handle: Optional[ObserverHandle] = (
            activity.register(self.on_activity) if activity is not None else None
        )

    @property
    def subscriptions(self) -> tuple[CollectionSubscription, CollectionSubscription]:
        return self.members, self.events

    def start(self) -> None:
        for sub in self.subscriptions:
            sub.start()

    def stop(self) -> None:
        for sub in self.subscriptions:
            sub.stop()

    async def fetch(self, force: bool = False) -> bool:
        """Fetch both collections; True if either was refreshed."""
        refreshed = [await sub.fetch(force) for sub in self.subscriptions]
        return any(refreshed)

    def on_activity(self, signal: ActivitySignal) -> None:
        for sub in self.subscriptions:
            sub.on_activity(signal)

    def close(self) -> None:
        """Stop both subscriptions and leave the activity monitor."""
        self.stop()
        if self._handle is not None:
            self._handle.unregister()
            self._handle = None

    # Typed views over the caches

    def member_list(self) -> List[Member]:
        return [Member.from_document(d) for d in self.members.documents]

    def event_list(self, event_type: Optional[EventType] = None) -> List[Event]:
        events = [Event.from_document(d) for d in self.events.documents]
        if event_type is not None:
            events = [e for e in events if e.type == event_type]
        return events

    def filtered_members(self, member_filter: MemberFilter) -> List[Member]:
        return member_filter.apply(self.member_list())

    def member_stats(self) -> MemberStats:
        return MemberStats.from_members(self.member_list())
