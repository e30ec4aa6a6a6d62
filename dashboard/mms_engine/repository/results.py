"""Result objects returned by the member and event services."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

from ..store import Document
from ..sync import PropagationResult

ACTION_ADDED = "added"
ACTION_UPDATED = "updated"
ACTION_ERROR = "error"


@dataclass
class ServiceResult:
    """Outcome of a service call. Store failures arrive here, not as raises.

    Attributes:
        id: Id of the document written or read
        action: "added" / "updated" / "error" for upserts
        document: Single document read
        documents: Documents listed
        propagation: Cross-collection propagation outcome, when one ran
        error: Error message if the call failed
    """

    id: Optional[str] = None
    action: Optional[str] = None
    document: Optional[Document] = None
    documents: List[Document] = field(default_factory=list)
    propagation: Optional[PropagationResult] = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.error is None


def timestamp() -> str:
    """Current time as an ISO 8601 UTC instant."""
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
