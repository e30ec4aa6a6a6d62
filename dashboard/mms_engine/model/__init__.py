"""
Record types and enumerations for members, events and attendance.

Documents keep their camelCase wire names; the dataclasses here are the typed
view used by the eligibility rules, the importer and the propagator.
"""

from .constants import (
    HISTORY_FIELD,
    SCHOOLS,
    SUBSIDY_RATES,
    EventType,
    MembershipType,
    StudentStatus,
    Track,
)
from .types import (
    Event,
    EventKey,
    IsmRecord,
    IssRecord,
    Member,
    NcsRecord,
    calendar_date,
    event_key,
    normalize_name,
    optional_int,
)

__all__ = [
    # Enumerations
    "MembershipType",
    "StudentStatus",
    "EventType",
    "Track",
    "SCHOOLS",
    "SUBSIDY_RATES",
    "HISTORY_FIELD",
    # Records
    "Member",
    "Event",
    "EventKey",
    "IsmRecord",
    "NcsRecord",
    "IssRecord",
    # Helpers
    "calendar_date",
    "event_key",
    "normalize_name",
    "optional_int",
]
