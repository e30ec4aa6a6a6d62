"""
Member and event services over the document store.

Both services return ServiceResult objects; expected failures (validation,
conflicts, store errors) are carried in `error` rather than raised.
Cross-collection work is delegated to the SyncPropagator so neither service
depends on the other.
"""

from .events import EventService
from .members import MemberService
from .results import ServiceResult

__all__ = [
    "MemberService",
    "EventService",
    "ServiceResult",
]
