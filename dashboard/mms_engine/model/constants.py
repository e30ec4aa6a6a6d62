"""
Enumerations and synonym tables for member and event fields.

The synonym tables map lower-cased, trimmed spreadsheet input to canonical
values. Lookups that miss are validation failures, never silent coercions.

How to change safely:
    - Canonical enum values are stored on documents; never rename them
    - Add synonyms freely, but keep keys lower-case and trimmed
"""

from __future__ import annotations

from enum import Enum


class MembershipType(str, Enum):
    """Membership class. Exco is a flag layered on Ordinary A."""

    ORDINARY_A = "Ordinary A"
    ORDINARY_B = "Ordinary B"
    ASSOCIATE = "Associate"


class StudentStatus(str, Enum):
    UNDERGRADUATE = "Undergraduate"
    POSTGRADUATE = "Postgraduate"
    GRADUATED = "Graduated"


class EventType(str, Enum):
    """Event category; selects the member history list it mirrors into."""

    ISM = "ISM"
    NCS = "NCS"
    ISS = "ISS"


class Track(str, Enum):
    ITT = "ITT"
    MBOT = "MBOT"


SCHOOLS = (
    "Accountancy",
    "Business",
    "Economics",
    "Computing & Information Systems",
    "Law",
    "Social Sciences",
    "College of Integrative Studies",
)

# Ordered tier set; every recorded subsidyUsed value comes from here.
SUBSIDY_RATES = (95, 90, 70, 50, 10)

EXCO_SUBSIDY_RATE = 95
ASSOCIATE_SUBSIDY_RATE = 10

# Descending tier sequences per class. They share the 70 tier so that an
# upgrade from Ordinary B keeps the tiers already consumed.
SUBSIDY_SEQUENCES = {
    MembershipType.ORDINARY_B: (70, 10),
    MembershipType.ORDINARY_A: (90, 70, 50, 10),
}

# Legacy stored value, read as Ordinary A + isExco.
LEGACY_EXCO = "Exco"

MEMBERSHIP_TYPE_MAP = {
    "ordinary a": MembershipType.ORDINARY_A,
    "ordinary-a": MembershipType.ORDINARY_A,
    "ordinarya": MembershipType.ORDINARY_A,
    "ordinary b": MembershipType.ORDINARY_B,
    "ordinary-b": MembershipType.ORDINARY_B,
    "ordinaryb": MembershipType.ORDINARY_B,
    "associate": MembershipType.ASSOCIATE,
}

# Inputs that mean "Ordinary A with the Exco flag".
EXCO_SYNONYMS = frozenset({"exco", "executive committee"})

STUDENT_STATUS_MAP = {
    "undergraduate": StudentStatus.UNDERGRADUATE,
    "undergrad": StudentStatus.UNDERGRADUATE,
    "postgraduate": StudentStatus.POSTGRADUATE,
    "postgrad": StudentStatus.POSTGRADUATE,
    "graduated": StudentStatus.GRADUATED,
    "alumni": StudentStatus.GRADUATED,
}

SCHOOL_NAME_MAP = {
    # Standard names
    "accountancy": "Accountancy",
    "business": "Business",
    "economics": "Economics",
    "computing & information systems": "Computing & Information Systems",
    "law": "Law",
    "social sciences": "Social Sciences",
    "college of integrative studies": "College of Integrative Studies",
    # Variations / abbreviations
    "computing and information systems": "Computing & Information Systems",
    "computing": "Computing & Information Systems",
    "scis": "Computing & Information Systems",
    "soss": "Social Sciences",
    "cis": "College of Integrative Studies",
    "integrative": "College of Integrative Studies",
}

TRACK_MAP = {track.value.lower(): track for track in Track}

# Member history list and cached counter per event type.
HISTORY_FIELD = {
    EventType.ISM: "ismAttendance",
    EventType.NCS: "ncsEvents",
    EventType.ISS: "issEvents",
}
