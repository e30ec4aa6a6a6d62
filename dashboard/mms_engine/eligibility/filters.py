"""
Member filtering and headline statistics over an in-memory collection.

Filters read the cached member list kept by the live subscriptions, so
results may lag the store between a write and the next snapshot.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

from ..model import Member, MembershipType
from .rules import has_completed_ncs, is_scholarship_eligible


@dataclass
class MemberFilter:
    """Criteria for narrowing the member list. None means "all".

    Attributes:
        search: Case-insensitive substring of full name, Campus ID or email
        membership_type: Exact membership class
        student_status: Exact student status
        admit_year: Exact admit year
        school: Exact school name
        track: Member takes this track
        ncs_completed: Graduation NCS requirement met (True) or not (False)
    """

    search: Optional[str] = None
    membership_type: Optional[MembershipType] = None
    student_status: Optional[str] = None
    admit_year: Optional[int] = None
    school: Optional[str] = None
    track: Optional[str] = None
    ncs_completed: Optional[bool] = None

    def matches(self, member: Member) -> bool:
        if self.search:
            needle = self.search.strip().lower()
            haystacks = (member.full_name, member.campus_id, member.school_email)
            if not any(needle in (h or "").lower() for h in haystacks):
                return False
        if self.membership_type is not None and member.membership_type != self.membership_type:
            return False
        if self.student_status is not None and member.student_status != self.student_status:
            return False
        if self.admit_year is not None and member.admit_year != self.admit_year:
            return False
        if self.school is not None and member.school != self.school:
            return False
        if self.track is not None and self.track not in member.tracks:
            return False
        if self.ncs_completed is not None and has_completed_ncs(member) != self.ncs_completed:
            return False
        return True

    def apply(self, members: Iterable[Member]) -> list[Member]:
        return [m for m in members if self.matches(m)]


@dataclass(frozen=True)
class MemberStats:
    """Dashboard totals.

    Attributes:
        total: Number of members
        ordinary_a: Ordinary A members, Exco included
        ordinary_b: Ordinary B members
        associate: Associate members
        scholarship_eligible: Members passing is_scholarship_eligible()
        ncs_completed: Members who met their NCS requirement
    """

    total: int
    ordinary_a: int
    ordinary_b: int
    associate: int
    scholarship_eligible: int
    ncs_completed: int

    @classmethod
    def from_members(cls, members: Iterable[Member]) -> MemberStats:
        members = list(members)
        by_type = {t: 0 for t in MembershipType}
        for member in members:
            if member.membership_type is not None:
                by_type[member.membership_type] += 1
        return cls(
            total=len(members),
            ordinary_a=by_type[MembershipType.ORDINARY_A],
            ordinary_b=by_type[MembershipType.ORDINARY_B],
            associate=by_type[MembershipType.ASSOCIATE],
            scholarship_eligible=sum(1 for m in members if is_scholarship_eligible(m)),
            ncs_completed=sum(1 for m in members if has_completed_ncs(m)),
        )

    def to_dict(self) -> dict[str, int]:
        return {
            "total": self.total,
            "ordinaryA": self.ordinary_a,
            "ordinaryB": self.ordinary_b,
            "associate": self.associate,
            "scholarshipEligible": self.scholarship_eligible,
            "ncsCompleted": self.ncs_completed,
        }
