"""
Core record types for members, events and attendance history.

Documents are stored with camelCase field names; these dataclasses are the
typed view the engine reasons over. Every type keeps the raw document (or
unknown keys) so that writes never drop fields this module does not know.

Invariants:
    - Wire field names are preserved exactly on round trip
    - History entries carry no event id; they are matched to events by
      normalized (name, calendar date)
    - A legacy membershipType of "Exco" reads as Ordinary A with isExco set

How to change safely:
    - Add fields with defaults; older documents will not carry them
    - Never rename a wire key without a migration
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Optional, Tuple

from .constants import LEGACY_EXCO, EventType, MembershipType

logger = logging.getLogger(__name__)

EventKey = Tuple[str, Optional[date]]


def calendar_date(value: Any) -> date | None:
    """Reduce a date-like value to its local calendar date.

    Accepts ``date``, ``datetime`` and ISO 8601 strings (date-only or full
    instants, with or without a ``Z`` suffix). Aware instants are converted to
    local time before the time of day is dropped.

    Returns:
        The calendar date, or None when the value is empty or unparseable.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        moment = value
    elif isinstance(value, date):
        return value
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            moment = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None

    if moment.tzinfo is not None:
        moment = moment.astimezone()
    return moment.date()


def normalize_name(name: Any) -> str:
    """Lower-cased, trimmed event name used for matching."""
    return str(name or "").strip().lower()


def event_key(name: Any, when: Any) -> EventKey:
    """Normalized identity of an event: (lower-trimmed name, calendar date)."""
    return normalize_name(name), calendar_date(when)


def optional_int(value: Any) -> int | None:
    """Coerce a stored counter to int, None when absent or not numeric."""
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


@dataclass
class IsmRecord:
    """ISM attendance: which event and the subsidy tier consumed."""

    event_name: str
    subsidy_used: int | None = None
    timestamp: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> IsmRecord:
        known = {"eventName", "subsidyUsed", "timestamp"}
        return cls(
            event_name=str(data.get("eventName") or ""),
            subsidy_used=optional_int(data.get("subsidyUsed")),
            timestamp=data.get("timestamp"),
            extra={k: v for k, v in data.items() if k not in known},
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.extra,
            "eventName": self.event_name,
            "subsidyUsed": self.subsidy_used,
            "timestamp": self.timestamp,
        }


@dataclass
class NcsRecord:
    """NCS attendance with per-session flags and an administrative override.

    Attributes:
        event_name: Name of the NCS event
        date: Event date as stored (ISO string)
        session1: Attended the first session
        session2: Attended the second session
        force_valid: Counts toward graduation regardless of sessions/dates
        force_valid_reason: Why the override was applied
    """

    event_name: str
    date: str | None = None
    session1: bool = False
    session2: bool = False
    force_valid: bool = False
    force_valid_reason: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> NcsRecord:
        known = {"eventName", "date", "session1", "session2", "forceValid", "forceValidReason"}
        return cls(
            event_name=str(data.get("eventName") or ""),
            date=data.get("date"),
            session1=bool(data.get("session1", False)),
            session2=bool(data.get("session2", False)),
            force_valid=bool(data.get("forceValid", False)),
            force_valid_reason=data.get("forceValidReason"),
            extra={k: v for k, v in data.items() if k not in known},
        )

    def to_dict(self) -> dict[str, Any]:
        data = {
            **self.extra,
            "eventName": self.event_name,
            "date": self.date,
            "session1": self.session1,
            "session2": self.session2,
            "forceValid": self.force_valid,
        }
        if self.force_valid_reason is not None:
            data["forceValidReason"] = self.force_valid_reason
        return data

    @property
    def attended_any_session(self) -> bool:
        return self.session1 or self.session2


@dataclass
class IssRecord:
    """ISS attendance."""

    event_name: str
    date: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> IssRecord:
        known = {"eventName", "date"}
        return cls(
            event_name=str(data.get("eventName") or ""),
            date=data.get("date"),
            extra={k: v for k, v in data.items() if k not in known},
        )

    def to_dict(self) -> dict[str, Any]:
        return {**self.extra, "eventName": self.event_name, "date": self.date}


def _membership(value: Any) -> tuple[MembershipType | None, bool]:
    if value == LEGACY_EXCO:
        return MembershipType.ORDINARY_A, True
    try:
        return MembershipType(value), False
    except ValueError:
        if value:
            logger.debug(f"Unknown membership type on document: {value!r}")
        return None, False


@dataclass
class Member:
    """Typed view of a member document.

    Attributes:
        id: Store-generated document id
        campus_id: Natural key, unique when non-empty
        membership_type: Ordinary A, Ordinary B or Associate
        is_exco: Exco flag layered on Ordinary A
        ordinary_a_declaration_date: ISO instant; absent means grandfathered
        ncs_attended: Manually maintained valid-NCS override, if present
        ncs_total_attended: Cached count of NCS records with any session
        document: Raw document as read from the store
    """

    id: str | None
    campus_id: str = ""
    full_name: str = ""
    school_email: str = ""
    membership_type: MembershipType | None = None
    is_exco: bool = False
    student_status: str | None = None
    school: str | None = None
    admit_year: int | None = None
    tracks: list[str] = field(default_factory=list)
    ordinary_a_declaration_date: str | None = None
    ism_attendance: list[IsmRecord] = field(default_factory=list)
    ncs_events: list[NcsRecord] = field(default_factory=list)
    iss_events: list[IssRecord] = field(default_factory=list)
    ncs_attended: int | None = None
    ncs_total_attended: int | None = None
    iss_attended: int | None = None
    scholarship_awarded: bool = False
    subsidy_override: int | None = None
    document: dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> Member:
        """Build a Member from a stored document (``id`` included)."""
        membership_type, legacy_exco = _membership(doc.get("membershipType"))
        tracks = doc.get("tracks") or []
        if isinstance(tracks, str):
            tracks = [t.strip() for t in tracks.split(",") if t.strip()]

        return cls(
            id=doc.get("id"),
            campus_id=str(doc.get("campusId") or ""),
            full_name=str(doc.get("fullName") or ""),
            school_email=str(doc.get("schoolEmail") or ""),
            membership_type=membership_type,
            is_exco=bool(doc.get("isExco", False)) or legacy_exco,
            student_status=doc.get("studentStatus"),
            school=doc.get("school"),
            admit_year=optional_int(doc.get("admitYear")),
            tracks=list(tracks),
            ordinary_a_declaration_date=doc.get("ordinaryADeclarationDate") or None,
            ism_attendance=[IsmRecord.from_dict(r) for r in doc.get("ismAttendance") or []],
            ncs_events=[NcsRecord.from_dict(r) for r in doc.get("ncsEvents") or []],
            iss_events=[IssRecord.from_dict(r) for r in doc.get("issEvents") or []],
            ncs_attended=optional_int(doc.get("ncsAttended")),
            ncs_total_attended=optional_int(doc.get("ncsTotalAttended")),
            iss_attended=optional_int(doc.get("issAttended")),
            scholarship_awarded=bool(doc.get("scholarshipAwarded", False)),
            subsidy_override=optional_int(doc.get("subsidyOverride")),
            document=dict(doc),
        )


@dataclass
class Event:
    """Typed view of an event document.

    Attributes:
        id: Store-generated document id
        name: Display name; part of the event identity
        date: ISO date or instant; part of the event identity
        type: ISM, NCS or ISS
        attendance: Member id -> attendance payload
    """

    id: str | None
    name: str
    date: str | None
    type: EventType | None
    attendance: dict[str, Any] = field(default_factory=dict)
    document: dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> Event:
        try:
            event_type: EventType | None = EventType(doc.get("type"))
        except ValueError:
            event_type = None
        return cls(
            id=doc.get("id"),
            name=str(doc.get("name") or ""),
            date=doc.get("date"),
            type=event_type,
            attendance=dict(doc.get("attendance") or {}),
            document=dict(doc),
        )

    @property
    def key(self) -> EventKey:
        return event_key(self.name, self.date)
