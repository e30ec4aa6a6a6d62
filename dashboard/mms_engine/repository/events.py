"""
Event service: CRUD over the events collection plus attendance.

Name and date edits and deletions are handed to the propagator so member
history follows the event.

Invariants:
    - No two events share a normalized (name, calendar date) pair at create
      or rename time, and no two ISM events share a normalized name
    - update_event() writes the event first, then propagates; a failed
      propagation is reported and can be retried by re-running it with the
      same old/new pair
    - delete_event() propagates first and keeps the event when any chunk
      failed, so the delete can be retried
    - An event's type never changes after creation
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from ..errors import ConflictError, MmsError, NotFoundError, ValidationError
from ..model import Event, EventType, calendar_date, event_key
from ..store import DocumentStore
from ..sync import SyncPropagator
from .results import ACTION_ADDED, ACTION_UPDATED, ServiceResult, timestamp

logger = logging.getLogger(__name__)


class EventService:
    """Event CRUD, identity checks and attendance.

    Example:
        >>> service = EventService(store, propagator)
        >>> created = await service.create_event({"name": "NCS 1", "date": "2024-03-02", "type": "NCS"})
        >>> await service.add_attendee(created.id, member_id, {"session1": True, "session2": True})
    """

    def __init__(
        self,
        store: DocumentStore,
        propagator: SyncPropagator,
        collection: str = "events",
    ) -> None:
        self.store = store
        self.propagator = propagator
        self.collection = collection

    async def list_events(self) -> ServiceResult:
        """All events, newest first."""
        try:
            documents = await self.store.query(self.collection, order_by="date", descending=True)
        except MmsError as e:
            return ServiceResult(error=e.message)
        return ServiceResult(documents=documents)

    async def get_event(self, event_id: str) -> ServiceResult:
        try:
            document = await self._get(event_id)
        except MmsError as e:
            return ServiceResult(id=event_id, error=e.message)
        return ServiceResult(id=event_id, document=document)

    async def _get(self, event_id: str) -> Dict[str, Any]:
        document = await self.store.get(self.collection, event_id)
        if document is None:
            raise NotFoundError(f"Event {event_id} not found", self.collection, event_id)
        return document

    async def _check_identity(
        self,
        name: Any,
        when: Any,
        event_type: Any,
        exclude_id: Optional[str] = None,
    ) -> None:
        key = event_key(name, when)
        # ISM history entries carry no date, so ISM names must be unique
        dateless = event_type == EventType.ISM.value
        for document in await self.store.query(self.collection):
            if document["id"] == exclude_id:
                continue
            existing = Event.from_document(document)
            if existing.key == key:
                raise ConflictError(
                    f"An event named '{name}' already exists on {key[1]}",
                    key=f"{key[0]}|{key[1]}",
                    existing_id=document["id"],
                )
            if dateless and existing.type == EventType.ISM and existing.key[0] == key[0]:
                raise ConflictError(
                    f"An ISM event named '{name}' already exists",
                    key=key[0],
                    existing_id=document["id"],
                )

    @staticmethod
    def _validate(data: Dict[str, Any]) -> None:
        errors = []
        if "name" in data and not str(data.get("name") or "").strip():
            errors.append("Event name is required")
        if "date" in data and calendar_date(data.get("date")) is None:
            errors.append(f"Invalid event date: {data.get('date')!r}")
        if errors:
            raise ValidationError(errors[0], errors=errors)

    async def create_event(self, data: Dict[str, Any]) -> ServiceResult:
        """Create an event with an empty attendance map by default."""
        try:
            payload = {"name": "", "date": None, **data}
            self._validate(payload)
            try:
                EventType(payload.get("type"))
            except ValueError:
                allowed = ", ".join(t.value for t in EventType)
                raise ValidationError(
                    f"Invalid event type {payload.get('type')!r}. Must be one of: {allowed}",
                    field_name="type",
                ) from None
            await self._check_identity(payload["name"], payload["date"], payload.get("type"))

            now = timestamp()
            event_id = await self.store.put(
                self.collection,
                {
                    **payload,
                    "attendance": payload.get("attendance") or {},
                    "createdAt": now,
                    "updatedAt": now,
                },
            )
        except MmsError as e:
            logger.warning(f"Create event failed: {e.message}", extra={"code": e.code})
            return ServiceResult(error=e.message)

        logger.info("Event created", extra={"event_id": event_id, "type": payload.get("type")})
        return ServiceResult(id=event_id, action=ACTION_ADDED)

    async def update_event(self, event_id: str, data: Dict[str, Any]) -> ServiceResult:
        """Update an event and carry a name/date change into member history."""
        try:
            old_document = await self._get(event_id)
            old = Event.from_document(old_document)
            self._validate(data)
            if "type" in data and data["type"] != old_document.get("type"):
                raise ValidationError("Event type cannot be changed", field_name="type")

            new_name = data.get("name", old.name)
            new_date = data.get("date", old.date)
            identity_changed = new_name != old.name or new_date != old.date
            if identity_changed and event_key(new_name, new_date) != old.key:
                await self._check_identity(new_name, new_date, old_document.get("type"), exclude_id=event_id)

            await self.store.update(self.collection, event_id, {**data, "updatedAt": timestamp()})
        except MmsError as e:
            logger.warning(f"Update event failed: {e.message}", extra={"event_id": event_id, "code": e.code})
            return ServiceResult(id=event_id, error=e.message)

        if not identity_changed:
            return ServiceResult(id=event_id, action=ACTION_UPDATED)

        propagation = await self.propagator.on_event_renamed_or_rescheduled(
            old_document, {"name": new_name, "date": new_date}
        )
        return ServiceResult(
            id=event_id,
            action=ACTION_UPDATED,
            propagation=propagation,
            error=propagation.error,
        )

    async def delete_event(self, event_id: str) -> ServiceResult:
        """Remove the event from member history, then delete it."""
        try:
            document = await self._get(event_id)
        except MmsError as e:
            return ServiceResult(id=event_id, error=e.message)

        propagation = await self.propagator.on_event_deleted(document)
        if not propagation.success:
            logger.warning(
                "Event kept after failed propagation",
                extra={"event_id": event_id, "failed_chunks": propagation.failed_chunks},
            )
            return ServiceResult(id=event_id, propagation=propagation, error=propagation.error)

        try:
            await self.store.delete(self.collection, event_id)
        except MmsError as e:
            return ServiceResult(id=event_id, propagation=propagation, error=e.message)

        logger.info("Event deleted", extra={"event_id": event_id, "members_updated": propagation.updated})
        return ServiceResult(id=event_id, propagation=propagation)

    async def add_attendee(
        self,
        event_id: str,
        member_id: str,
        attendance: Optional[Dict[str, Any]] = None,
    ) -> ServiceResult:
        """Record attendance on the event and in the member's history."""
        propagation = await self.propagator.record_attendance(
            {"id": event_id}, {"id": member_id}, attendance
        )
        return ServiceResult(id=event_id, propagation=propagation, error=propagation.error)

    async def remove_attendee(self, event_id: str, member_id: str) -> ServiceResult:
        """Remove attendance from the event and from the member's history."""
        propagation = await self.propagator.remove_attendance({"id": event_id}, {"id": member_id})
        return ServiceResult(id=event_id, propagation=propagation, error=propagation.error)
