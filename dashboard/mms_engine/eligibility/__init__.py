"""
Eligibility engine: derived benefit and graduation values.

This module provides:
- Subsidy tier advancement per membership class
- NCS attendance validity and counts
- Graduation (NCS) requirement and scholarship eligibility
- Member filtering and dashboard statistics

Invariants:
    - No I/O; every function is a pure function of its inputs
    - Cached counters on the member win over recomputation

How to change safely:
    - Cover every rule change with a boundary test in test_eligibility.py
"""

from .filters import MemberFilter, MemberStats
from .rules import (
    has_completed_ncs,
    is_ncs_event_valid,
    is_scholarship_eligible,
    member_next_subsidy_rate,
    next_subsidy_rate,
    required_ncs_count,
    subsidy_history,
    total_ncs_count,
    valid_ncs_count,
)

__all__ = [
    # Subsidy
    "next_subsidy_rate",
    "member_next_subsidy_rate",
    "subsidy_history",
    # NCS
    "is_ncs_event_valid",
    "valid_ncs_count",
    "total_ncs_count",
    "required_ncs_count",
    "has_completed_ncs",
    # Scholarship
    "is_scholarship_eligible",
    # Filtering
    "MemberFilter",
    "MemberStats",
]
