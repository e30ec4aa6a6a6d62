"""
Cross-collection consistency between members and events.

Attendance is stored twice: as a history entry on the member (authoritative)
and as a payload in the event's attendance map. History entries carry no
event id, so they are matched to events by value: the lower-trimmed event
name plus the calendar date. Entries without a date (ISM) match on the name
alone.

Every propagation scans the full member or event collection, builds one
partial update per affected document and commits them in chunks of at most
500 operations. Chunks commit independently, so a run can partially succeed.

Invariants:
    - Every operation is idempotent: matching is by value, never by a
      "done" marker, so a retry after partial failure is safe
    - Only eventName and date are rewritten on a matching entry; every other
      key (known or not) is preserved
    - Cached counters are decremented on removal and never go below zero
    - A member document is deleted only after every event stopped
      referencing it

Known ambiguity:
    Two events that legitimately share a name and date are
    indistinguishable to history entries. ISM entries carry no date, so two
    ISM events sharing a name would be too. EventService rejects creating or
    renaming into either kind of pair, but a rename racing another editor can
    still produce one.

How to change safely:
    - Keep matching rules in `entry_matches` only
    - Never roll back committed chunks; make the operation idempotent instead
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol, Sequence, Union

from ..config import MAX_BATCH_OPERATIONS
from ..eligibility import is_ncs_event_valid, member_next_subsidy_rate, total_ncs_count
from ..errors import MmsError, NotFoundError
from ..model import (
    HISTORY_FIELD,
    SUBSIDY_RATES,
    Event,
    EventKey,
    EventType,
    Member,
    NcsRecord,
    calendar_date,
    normalize_name,
)
from ..store import DELETE_FIELD, Document, DocumentStore, WriteOp
from .batching import BatchOutcome, commit_in_chunks

logger = logging.getLogger(__name__)

EventLike = Union[Event, Document]
MemberLike = Union[Member, Document]


class CollectionSource(Protocol):
    """Anything that can hand over a full, loaded collection."""

    async def ensure_loaded(self) -> List[Document]:
        ...


class StoreCollectionSource:
    """Reads a whole collection straight from the store on every call."""

    def __init__(self, store: DocumentStore, collection: str) -> None:
        self.store = store
        self.collection = collection

    async def ensure_loaded(self) -> List[Document]:
        return await self.store.query(self.collection)


@dataclass
class PropagationResult:
    """Result of a propagation.

    Attributes:
        success: True when every chunk committed
        updated: Documents written by committed chunks
        total_chunks: Batches issued
        failed_chunks: Batches that failed
        error: Error message if anything failed
    """

    success: bool
    updated: int = 0
    total_chunks: int = 0
    failed_chunks: int = 0
    error: Optional[str] = None

    @classmethod
    def from_outcome(cls, outcome: BatchOutcome) -> PropagationResult:
        failure = outcome.to_error()
        return cls(
            success=failure is None,
            updated=outcome.committed,
            total_chunks=outcome.total_chunks,
            failed_chunks=outcome.failed_chunks,
            error=failure.message if failure else None,
        )

    @classmethod
    def failed(cls, error: str) -> PropagationResult:
        return cls(success=False, error=error)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _as_event(event: EventLike) -> Event:
    return event if isinstance(event, Event) else Event.from_document(event)


def _as_member(member: MemberLike) -> Member:
    return member if isinstance(member, Member) else Member.from_document(member)


def entry_matches(entry: Any, key: EventKey) -> bool:
    """Whether a history entry refers to the event identified by key."""
    if not isinstance(entry, dict):
        return False
    name, when = key
    if normalize_name(entry.get("eventName")) != name:
        return False
    if entry.get("date") in (None, ""):
        return True
    return calendar_date(entry.get("date")) == when


def counter_updates(
    member: Member,
    event_type: EventType,
    before: Sequence[Dict[str, Any]],
    after: Sequence[Dict[str, Any]],
) -> Dict[str, Any]:
    """Cached counter fields to write when a history list changes.

    Present counters move by the change in the derived count, floored at
    zero. An absent ncsTotalAttended or issAttended is filled in from the new
    list; an absent ncsAttended stays absent since it is an override.
    """
    updates: Dict[str, Any] = {}

    if event_type == EventType.NCS:
        old_records = [NcsRecord.from_dict(e) for e in before if isinstance(e, dict)]
        new_records = [NcsRecord.from_dict(e) for e in after if isinstance(e, dict)]

        attended_delta = sum(r.attended_any_session for r in new_records) - sum(
            r.attended_any_session for r in old_records
        )
        if attended_delta:
            if member.ncs_total_attended is not None:
                updates["ncsTotalAttended"] = max(0, member.ncs_total_attended + attended_delta)
            else:
                updates["ncsTotalAttended"] = sum(r.attended_any_session for r in new_records)

        if member.ncs_attended is not None:
            valid_delta = sum(is_ncs_event_valid(member, r) for r in new_records) - sum(
                is_ncs_event_valid(member, r) for r in old_records
            )
            if valid_delta:
                updates["ncsAttended"] = max(0, member.ncs_attended + valid_delta)

    elif event_type == EventType.ISS:
        delta = len(after) - len(before)
        if delta:
            if member.iss_attended is not None:
                updates["issAttended"] = max(0, member.iss_attended + delta)
            else:
                updates["issAttended"] = len(after)

    return updates


class SyncPropagator:
    """Keeps member history and event attendance maps consistent.

    Depends on both collections but is owned by neither service, so member
    and event code never call into each other.

    Example:
        >>> propagator = SyncPropagator(store)
        >>> result = await propagator.on_event_renamed_or_rescheduled(
        ...     old_event, {"name": "NCS Kickoff", "date": "2024-03-02"}
        ... )
        >>> result.updated, result.failed_chunks
    """

    def __init__(
        self,
        store: DocumentStore,
        members_source: Optional[CollectionSource] = None,
        events_source: Optional[CollectionSource] = None,
        members_collection: str = "members",
        events_collection: str = "events",
        batch_limit: int = MAX_BATCH_OPERATIONS,
    ) -> None:
        """Initialize the propagator.

        Args:
            store: Document store
            members_source: Cached member collection (defaults to a store query)
            events_source: Cached event collection (defaults to a store query)
            members_collection: Members collection name
            events_collection: Events collection name
            batch_limit: Maximum operations per committed chunk
        """
        self.store = store
        self.members_collection = members_collection
        self.events_collection = events_collection
        self.members_source = members_source or StoreCollectionSource(store, members_collection)
        self.events_source = events_source or StoreCollectionSource(store, events_collection)
        self.batch_limit = min(batch_limit, MAX_BATCH_OPERATIONS)

    async def _load(self, source: CollectionSource, name: str) -> List[Document]:
        documents = await source.ensure_loaded()
        logger.debug(f"Scanning {len(documents)} {name}")
        return documents

    async def _commit(self, operation: str, ops: Sequence[WriteOp]) -> PropagationResult:
        outcome = await commit_in_chunks(self.store, ops, self.batch_limit)
        result = PropagationResult.from_outcome(outcome)
        log = logger.info if result.success else logger.error
        log(
            f"Propagation {operation} finished",
            extra={
                "operation": operation,
                "updated": result.updated,
                "total_chunks": result.total_chunks,
                "failed_chunks": result.failed_chunks,
            },
        )
        return result

    async def on_event_renamed_or_rescheduled(
        self,
        old_event: EventLike,
        new_fields: Dict[str, Any],
    ) -> PropagationResult:
        """Rewrite eventName/date on every member entry matching the old event.

        Args:
            old_event: The event as it was before the edit
            new_fields: Edited fields; only "name" and "date" are considered

        Returns:
            PropagationResult; running it twice yields the same final state
        """
        old = _as_event(old_event)
        new_name = new_fields.get("name", old.name)
        new_date = new_fields.get("date", old.date)
        if old.type is None or (new_name == old.name and new_date == old.date):
            return PropagationResult(success=True)

        history_field = HISTORY_FIELD[old.type]
        try:
            members = await self._load(self.members_source, self.members_collection)
        except MmsError as e:
            return PropagationResult.failed(e.message)

        now = _now()
        ops = []
        for doc in members:
            entries = doc.get(history_field) or []
            rewritten = []
            for entry in entries:
                if entry_matches(entry, old.key):
                    updated = {**entry, "eventName": new_name}
                    if "date" in entry:
                        updated["date"] = new_date
                    rewritten.append(updated)
                else:
                    rewritten.append(entry)
            if rewritten != entries:
                ops.append(
                    WriteOp.update(
                        self.members_collection,
                        doc["id"],
                        {history_field: rewritten, "updatedAt": now},
                    )
                )

        return await self._commit("rename", ops)

    async def on_event_deleted(self, event: EventLike) -> PropagationResult:
        """Remove matching history entries from every member and fix counters."""
        deleted = _as_event(event)
        if deleted.type is None:
            return PropagationResult(success=True)

        history_field = HISTORY_FIELD[deleted.type]
        try:
            members = await self._load(self.members_source, self.members_collection)
        except MmsError as e:
            return PropagationResult.failed(e.message)

        now = _now()
        ops = []
        for doc in members:
            entries = doc.get(history_field) or []
            kept = [e for e in entries if not entry_matches(e, deleted.key)]
            if len(kept) == len(entries):
                continue
            fields = {
                history_field: kept,
                **counter_updates(Member.from_document(doc), deleted.type, entries, kept),
                "updatedAt": now,
            }
            ops.append(WriteOp.update(self.members_collection, doc["id"], fields))

        return await self._commit("event_delete", ops)

    async def on_member_deleted(self, member_id: str) -> PropagationResult:
        """Drop the member from every event's attendance map, then delete it.

        The member document is kept when any chunk fails, so the cascade can
        simply be run again.
        """
        try:
            events = await self._load(self.events_source, self.events_collection)
        except MmsError as e:
            return PropagationResult.failed(e.message)

        now = _now()
        ops = [
            WriteOp.update(
                self.events_collection,
                doc["id"],
                {f"attendance.{member_id}": DELETE_FIELD, "updatedAt": now},
            )
            for doc in events
            if member_id in (doc.get("attendance") or {})
        ]

        result = await self._commit("member_delete", ops)
        if not result.success:
            logger.warning(
                "Member kept after failed cascade",
                extra={"member_id": member_id, "failed_chunks": result.failed_chunks},
            )
            return result

        try:
            await self.store.delete(self.members_collection, member_id)
        except MmsError as e:
            result.success = False
            result.error = e.message
        return result

    async def _read_pair(self, event: EventLike, member: MemberLike) -> tuple[Event, Member]:
        event_id = _as_event(event).id
        member_id = _as_member(member).id
        event_doc = await self.store.get(self.events_collection, event_id) if event_id else None
        if event_doc is None:
            raise NotFoundError(f"Event {event_id} not found", self.events_collection, str(event_id))
        member_doc = await self.store.get(self.members_collection, member_id) if member_id else None
        if member_doc is None:
            raise NotFoundError(f"Member {member_id} not found", self.members_collection, str(member_id))
        return Event.from_document(event_doc), Member.from_document(member_doc)

    async def record_attendance(
        self,
        event: EventLike,
        member: MemberLike,
        payload: Optional[Dict[str, Any]] = None,
    ) -> PropagationResult:
        """Record attendance on both sides in one atomic batch.

        An existing matching history entry is replaced in place (its unknown
        keys kept), so recording the same attendance twice changes nothing.
        ISM attendance without an explicit subsidyUsed keeps the subsidy of an
        existing entry, or takes the member's next subsidy rate.

        Args:
            event: Event attended
            member: Attending member
            payload: ISM {subsidyUsed?}, NCS {session1, session2, forceValid,
                forceValidReason?}, ISS {}
        """
        payload = dict(payload or {})
        try:
            current_event, current_member = await self._read_pair(event, member)
        except MmsError as e:
            return PropagationResult.failed(e.message)
        if current_event.type is None:
            return PropagationResult.failed(f"Event {current_event.id} has no valid type")

        history_field = HISTORY_FIELD[current_event.type]
        entries = list(current_member.document.get(history_field) or [])
        index = next((i for i, e in enumerate(entries) if entry_matches(e, current_event.key)), None)
        existing = entries[index] if index is not None else {}

        entry: Dict[str, Any] = {"eventName": current_event.name}
        if current_event.type == EventType.ISM:
            subsidy = payload.get("subsidyUsed")
            if subsidy not in SUBSIDY_RATES:
                subsidy = existing.get("subsidyUsed") or member_next_subsidy_rate(current_member)
            entry["subsidyUsed"] = subsidy
            entry["timestamp"] = payload.get("timestamp") or existing.get("timestamp") or _now()
            payload["subsidyUsed"] = subsidy
        else:
            entry["date"] = current_event.date
            if current_event.type == EventType.NCS:
                entry["session1"] = bool(payload.get("session1", False))
                entry["session2"] = bool(payload.get("session2", False))
                entry["forceValid"] = bool(payload.get("forceValid", False))
                if payload.get("forceValidReason"):
                    entry["forceValidReason"] = payload["forceValidReason"]

        merged = {**existing, **entry}
        after = list(entries)
        if index is None:
            after.append(merged)
        else:
            after[index] = merged

        now = _now()
        ops = [
            WriteOp.update(
                self.events_collection,
                current_event.id,
                {f"attendance.{current_member.id}": payload, "updatedAt": now},
            ),
            WriteOp.update(
                self.members_collection,
                current_member.id,
                {
                    history_field: after,
                    **counter_updates(current_member, current_event.type, entries, after),
                    "updatedAt": now,
                },
            ),
        ]
        return await self._commit("record_attendance", ops)

    async def remove_attendance(self, event: EventLike, member: MemberLike) -> PropagationResult:
        """Remove attendance from both sides in one atomic batch."""
        try:
            current_event, current_member = await self._read_pair(event, member)
        except MmsError as e:
            return PropagationResult.failed(e.message)

        now = _now()
        ops = [
            WriteOp.update(
                self.events_collection,
                current_event.id,
                {f"attendance.{current_member.id}": DELETE_FIELD, "updatedAt": now},
            )
        ]
        if current_event.type is not None:
            history_field = HISTORY_FIELD[current_event.type]
            entries = current_member.document.get(history_field) or []
            kept = [e for e in entries if not entry_matches(e, current_event.key)]
            if len(kept) != len(entries):
                ops.append(
                    WriteOp.update(
                        self.members_collection,
                        current_member.id,
                        {
                            history_field: kept,
                            **counter_updates(current_member, current_event.type, entries, kept),
                            "updatedAt": now,
                        },
                    )
                )
        return await self._commit("remove_attendance", ops)

    async def backfill_ncs_totals(self) -> PropagationResult:
        """Fill in ncsTotalAttended on members that have never had it.

        Members that already carry the counter are skipped, so the backfill
        can be re-run at any time.
        """
        try:
            members = await self.store.query(self.members_collection)
        except MmsError as e:
            return PropagationResult.failed(e.message)

        ops = [
            WriteOp.update(
                self.members_collection,
                doc["id"],
                {"ncsTotalAttended": total_ncs_count(Member.from_document(doc))},
            )
            for doc in members
            if doc.get("ncsTotalAttended") is None
        ]
        logger.info(
            "Backfilling NCS totals",
            extra={"members": len(members), "missing": len(ops)},
        )
        return await self._commit("backfill_ncs_totals", ops)
