"""
Eligibility rules: subsidy tiers, NCS validity and graduation requirement.

Everything here is a pure function of a member's recorded history. Nothing
reads or writes the store.

Invariants:
    - The next subsidy rate is found by scanning the class sequence for the
      first tier not yet in history, never by counting attendances
    - A present ncsAttended value always wins over recomputation
    - NCS validity compares calendar dates only (local, time of day dropped)

How to change safely:
    - Tier sequences live in model.constants; change them there
    - Any change to validity rules changes graduation status of existing
      members; announce it before deploying
"""

from __future__ import annotations

from typing import Iterable, Sequence

from ..model import (
    SUBSIDY_RATES,
    Member,
    MembershipType,
    NcsRecord,
    calendar_date,
)
from ..model.constants import (
    ASSOCIATE_SUBSIDY_RATE,
    EXCO_SUBSIDY_RATE,
    LEGACY_EXCO,
    SUBSIDY_SEQUENCES,
    Track,
)

# Valid NCS events needed to graduate, by number of distinct tracks taken.
REQUIRED_NCS_BY_TRACK_COUNT = {0: 0, 1: 3, 2: 5}


def next_subsidy_rate(
    membership_type: MembershipType | str | None,
    is_exco: bool,
    history: Sequence[int],
) -> int:
    """Next ISM subsidy percentage for a member.

    Exco always gets the top tier, as does a stored legacy "Exco"
    membership type, and Associates the bottom one. Ordinary classes walk a
    fixed descending sequence and receive the first tier not already
    consumed; once every tier is used the last one repeats. Because both
    Ordinary sequences share the 70 tier, a member who used 70 as Ordinary B
    and was upgraded to Ordinary A gets 90 next.

    Args:
        membership_type: Ordinary A, Ordinary B, Associate or legacy "Exco"
        is_exco: Exco flag
        history: subsidyUsed values recorded so far, oldest first

    Returns:
        One of SUBSIDY_RATES
    """
    if is_exco or membership_type == LEGACY_EXCO:
        return EXCO_SUBSIDY_RATE

    try:
        membership = MembershipType(membership_type)
    except ValueError:
        return ASSOCIATE_SUBSIDY_RATE

    sequence = SUBSIDY_SEQUENCES.get(membership)
    if sequence is None:
        return ASSOCIATE_SUBSIDY_RATE

    used = set(history)
    for rate in sequence:
        if rate not in used:
            return rate
    return sequence[-1]


def subsidy_history(member: Member) -> list[int]:
    """Ordered subsidyUsed values taken from ismAttendance."""
    return [r.subsidy_used for r in member.ism_attendance if r.subsidy_used is not None]


def member_next_subsidy_rate(member: Member) -> int:
    """Next subsidy rate for a member, honouring a manual override."""
    if member.subsidy_override in SUBSIDY_RATES:
        return member.subsidy_override
    return next_subsidy_rate(member.membership_type, member.is_exco, subsidy_history(member))


def is_ncs_event_valid(member: Member, record: NcsRecord) -> bool:
    """Whether one NCS attendance counts toward graduation.

    Rules, in order:
        1. forceValid makes the record valid
        2. Both sessions are required
        3. Members other than Ordinary A: valid
        4. Ordinary A without a declaration date: valid (grandfathered)
        5. Otherwise valid iff the event date is on or after the declaration
           date; a record without a usable date is invalid
    """
    if record.force_valid:
        return True
    if not (record.session1 and record.session2):
        return False
    if member.membership_type != MembershipType.ORDINARY_A:
        return True

    declared = calendar_date(member.ordinary_a_declaration_date)
    if declared is None:
        return True

    held = calendar_date(record.date)
    if held is None:
        return False
    return held >= declared


def valid_ncs_count(member: Member) -> int:
    """Number of NCS events counting toward graduation.

    A stored ncsAttended value takes precedence so that administrative
    corrections survive recomputation.
    """
    if member.ncs_attended is not None:
        return member.ncs_attended
    return sum(1 for record in member.ncs_events if is_ncs_event_valid(member, record))


def total_ncs_count(member: Member) -> int:
    """Number of NCS records with at least one attended session."""
    return sum(1 for record in member.ncs_events if record.attended_any_session)


def required_ncs_count(tracks: Iterable[str]) -> int:
    """Valid NCS events required to graduate: 5 for both tracks, 3 for one."""
    known = {t.value for t in Track}
    taken = {str(t).strip().upper() for t in tracks} & known
    return REQUIRED_NCS_BY_TRACK_COUNT[len(taken)]


def has_completed_ncs(member: Member) -> bool:
    required = required_ncs_count(member.tracks)
    return required > 0 and valid_ncs_count(member) >= required


def is_scholarship_eligible(member: Member) -> bool:
    """Ordinary A members (Exco excluded) who have not been awarded yet."""
    return (
        member.membership_type == MembershipType.ORDINARY_A
        and not member.is_exco
        and not member.scholarship_awarded
    )
