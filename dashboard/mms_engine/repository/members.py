"""
Member service: CRUD over the members collection.

Invariants:
    - Store errors never escape; every call returns a ServiceResult
    - createdAt is written once, updatedAt on every write
    - Deletion cascades through the propagator before the document goes

Known gap:
    add_member() checks Campus ID uniqueness with a query followed by a
    write. Two editors adding the same Campus ID at the same moment can both
    succeed. upsert_member() uses the store's atomic find-or-create and does
    not have this gap.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from ..errors import ConflictError, MmsError, ValidationError
from ..store import DocumentStore
from ..sync import SyncPropagator
from .results import ACTION_ADDED, ACTION_ERROR, ACTION_UPDATED, ServiceResult, timestamp

logger = logging.getLogger(__name__)


class MemberService:
    """Member CRUD with Campus ID uniqueness checks.

    Example:
        >>> service = MemberService(store, propagator)
        >>> result = await service.add_member({"campusId": "01234567", "fullName": "JANE TAN"})
        >>> result.id
    """

    def __init__(
        self,
        store: DocumentStore,
        propagator: SyncPropagator,
        collection: str = "members",
    ) -> None:
        self.store = store
        self.propagator = propagator
        self.collection = collection

    async def list_members(self) -> ServiceResult:
        """All members ordered by full name."""
        try:
            documents = await self.store.query(self.collection, order_by="fullName")
        except MmsError as e:
            return ServiceResult(error=e.message)
        return ServiceResult(documents=documents)

    async def get_member(self, member_id: str) -> ServiceResult:
        try:
            document = await self.store.get(self.collection, member_id)
        except MmsError as e:
            return ServiceResult(id=member_id, error=e.message)
        if document is None:
            return ServiceResult(id=member_id, error=f"Member {member_id} not found")
        return ServiceResult(id=member_id, document=document)

    async def _find_by_campus_id(self, campus_id: str) -> Optional[str]:
        matches = await self.store.query(self.collection, where=[("campusId", "==", campus_id)])
        return matches[0]["id"] if matches else None

    async def add_member(self, data: Dict[str, Any]) -> ServiceResult:
        """Create a member, rejecting a Campus ID already in use."""
        campus_id = str(data.get("campusId") or "").strip()
        try:
            if campus_id:
                existing = await self._find_by_campus_id(campus_id)
                if existing is not None:
                    raise ConflictError(
                        "A member with this Campus ID already exists",
                        key=campus_id,
                        existing_id=existing,
                    )
            now = timestamp()
            member_id = await self.store.put(
                self.collection,
                {**data, "createdAt": now, "updatedAt": now},
            )
        except MmsError as e:
            logger.warning(f"Add member failed: {e.message}", extra={"campus_id": campus_id, "code": e.code})
            return ServiceResult(error=e.message)

        logger.info("Member added", extra={"member_id": member_id, "campus_id": campus_id})
        return ServiceResult(id=member_id, action=ACTION_ADDED)

    async def update_member(self, member_id: str, data: Dict[str, Any]) -> ServiceResult:
        """Merge fields into a member.

        Changing the Campus ID to one held by another member is rejected.
        """
        campus_id = str(data.get("campusId") or "").strip()
        try:
            if campus_id:
                existing = await self._find_by_campus_id(campus_id)
                if existing is not None and existing != member_id:
                    raise ConflictError(
                        "A member with this Campus ID already exists",
                        key=campus_id,
                        existing_id=existing,
                    )
            await self.store.update(self.collection, member_id, {**data, "updatedAt": timestamp()})
        except MmsError as e:
            logger.warning(f"Update member failed: {e.message}", extra={"member_id": member_id, "code": e.code})
            return ServiceResult(id=member_id, error=e.message)
        return ServiceResult(id=member_id, action=ACTION_UPDATED)

    async def delete_member(self, member_id: str) -> ServiceResult:
        """Remove the member from every event, then delete it.

        When part of the cascade fails the member is kept and the error says
        how many chunks failed; calling again finishes the job.
        """
        propagation = await self.propagator.on_member_deleted(member_id)
        return ServiceResult(id=member_id, propagation=propagation, error=propagation.error)

    async def upsert_member(
        self,
        data: Dict[str, Any],
        defaults: Optional[Dict[str, Any]] = None,
    ) -> ServiceResult:
        """Update the member with this Campus ID, or create it.

        Args:
            data: Fields written on create and merged on update
            defaults: Fields written only on create

        Returns:
            ServiceResult with action "added", "updated" or "error"
        """
        campus_id = str(data.get("campusId") or "").strip()
        try:
            if not campus_id:
                raise ValidationError("Campus ID is required", field_name="campusId")
            now = timestamp()
            member_id, created = await self.store.upsert_by_field(
                self.collection,
                "campusId",
                campus_id,
                {**data, "campusId": campus_id, "updatedAt": now},
                defaults={**(defaults or {}), "createdAt": now},
            )
        except MmsError as e:
            return ServiceResult(action=ACTION_ERROR, error=e.message)
        return ServiceResult(id=member_id, action=ACTION_ADDED if created else ACTION_UPDATED)
