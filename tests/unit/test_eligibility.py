"""
Unit tests for the eligibility rules.

Tests cover:
- Subsidy tier sequences, Exco and Associate rates, class upgrades
- NCS validity boundaries and overrides
- Graduation requirement by track count
- Scholarship eligibility
- Member filtering and statistics
"""

import pytest

from dashboard.mms_engine.eligibility import (
    MemberFilter,
    MemberStats,
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
from dashboard.mms_engine.model import MembershipType, NcsRecord
from tests.factories import make_member, ncs_entry


def ism(name, subsidy):
    return {"eventName": name, "subsidyUsed": subsidy, "timestamp": "2024-01-01T00:00:00Z"}


class TestNextSubsidyRate:
    """Tests for tier advancement."""

    @pytest.mark.parametrize(
        "history,expected",
        [
            ([], 90),
            ([90], 70),
            ([90, 70], 50),
            ([90, 70, 50], 10),
            ([90, 70, 50, 10], 10),
            ([90, 70, 50, 10, 10], 10),
        ],
    )
    def test_ordinary_a_sequence(self, history, expected):
        """Ordinary A walks 90, 70, 50, 10 and then stays at 10."""
        assert next_subsidy_rate(MembershipType.ORDINARY_A, False, history) == expected

    @pytest.mark.parametrize("history,expected", [([], 70), ([70], 10), ([70, 10], 10)])
    def test_ordinary_b_sequence(self, history, expected):
        """Ordinary B walks 70, 10."""
        assert next_subsidy_rate(MembershipType.ORDINARY_B, False, history) == expected

    def test_exco_always_top_tier(self):
        """Exco gets 95 whatever was used before."""
        assert next_subsidy_rate(MembershipType.ORDINARY_A, True, [95, 95, 95]) == 95
        assert next_subsidy_rate(MembershipType.ORDINARY_B, True, []) == 95

    def test_legacy_exco_membership_top_tier(self):
        """A stored "Exco" membership type counts as Exco without the flag."""
        assert next_subsidy_rate("Exco", False, [95, 95]) == 95

    def test_associate_bottom_tier(self):
        """Associates always get 10."""
        assert next_subsidy_rate(MembershipType.ASSOCIATE, False, []) == 10

    def test_unknown_membership_gets_bottom_tier(self):
        """Unknown or missing membership falls back to 10."""
        assert next_subsidy_rate(None, False, []) == 10
        assert next_subsidy_rate("Honorary", False, []) == 10

    def test_accepts_string_membership(self):
        """Stored string values work as well as the enum."""
        assert next_subsidy_rate("Ordinary A", False, [90]) == 70

    def test_upgrade_from_ordinary_b(self):
        """Used 70 as Ordinary B, upgraded to Ordinary A: next is 90."""
        assert next_subsidy_rate(MembershipType.ORDINARY_A, False, [70]) == 90

    def test_upgrade_after_both_b_tiers(self):
        """Used 70 and 10 as Ordinary B, now Ordinary A: 90, then 50."""
        assert next_subsidy_rate(MembershipType.ORDINARY_A, False, [70, 10]) == 90
        assert next_subsidy_rate(MembershipType.ORDINARY_A, False, [70, 10, 90]) == 50


class TestMemberSubsidy:
    """Tests for the member-level subsidy helpers."""

    def test_history_from_ism_attendance(self):
        """History is the ordered subsidyUsed values."""
        member = make_member(ismAttendance=[ism("ISM 1", 90), ism("ISM 2", 70)])
        assert subsidy_history(member) == [90, 70]
        assert member_next_subsidy_rate(member) == 50

    def test_history_skips_missing_subsidy(self):
        """Entries without subsidyUsed are ignored."""
        member = make_member(ismAttendance=[{"eventName": "ISM 1"}, ism("ISM 2", 90)])
        assert subsidy_history(member) == [90]

    def test_override_in_tier_set_wins(self):
        """A subsidyOverride from the tier set replaces the sequence."""
        member = make_member(subsidyOverride=50)
        assert member_next_subsidy_rate(member) == 50

    def test_override_outside_tier_set_ignored(self):
        """A subsidyOverride outside the tier set is not honoured."""
        member = make_member(subsidyOverride=42)
        assert member_next_subsidy_rate(member) == 90

    def test_legacy_exco_value(self):
        """A stored membershipType of "Exco" reads as Ordinary A with the flag."""
        member = make_member(membership_type="Exco")
        assert member.membership_type == MembershipType.ORDINARY_A
        assert member.is_exco is True
        assert member_next_subsidy_rate(member) == 95


class TestNcsValidity:
    """Tests for NCS validity rules."""

    DECLARED = "2024-01-01T00:00:00"

    def declared_member(self, **fields):
        return make_member(ordinaryADeclarationDate=self.DECLARED, **fields)

    def test_before_declaration_invalid(self):
        """Event the day before the declaration does not count."""
        record = NcsRecord.from_dict(ncs_entry("NCS", "2023-12-31"))
        assert is_ncs_event_valid(self.declared_member(), record) is False

    def test_on_declaration_day_valid(self):
        """Event on the declaration day counts."""
        record = NcsRecord.from_dict(ncs_entry("NCS", "2024-01-01"))
        assert is_ncs_event_valid(self.declared_member(), record) is True

    def test_time_of_day_ignored(self):
        """Only calendar dates are compared."""
        member = make_member(ordinaryADeclarationDate="2024-01-01T18:30:00")
        record = NcsRecord.from_dict(ncs_entry("NCS", "2024-01-01T08:00:00"))
        assert is_ncs_event_valid(member, record) is True

    def test_single_session_invalid(self):
        """Both sessions are required."""
        record = NcsRecord.from_dict(ncs_entry("NCS", "2024-02-01", session2=False))
        assert is_ncs_event_valid(self.declared_member(), record) is False
        assert is_ncs_event_valid(make_member(membership_type="Ordinary B"), record) is False

    def test_force_valid_overrides_everything(self):
        """forceValid counts even with no sessions before the declaration."""
        record = NcsRecord.from_dict(
            ncs_entry("NCS", "2023-06-01", session1=False, session2=False, forceValid=True)
        )
        assert is_ncs_event_valid(self.declared_member(), record) is True

    def test_other_classes_ignore_dates(self):
        """Non Ordinary A members only need both sessions."""
        record = NcsRecord.from_dict(ncs_entry("NCS", "2020-01-01"))
        member = make_member(membership_type="Ordinary B", ordinaryADeclarationDate=self.DECLARED)
        assert is_ncs_event_valid(member, record) is True

    def test_grandfathered_without_declaration(self):
        """Ordinary A without a declaration date counts everything attended."""
        record = NcsRecord.from_dict(ncs_entry("NCS", "2019-01-01"))
        assert is_ncs_event_valid(make_member(), record) is True

    def test_missing_record_date_invalid_when_declared(self):
        """A record with no date cannot be compared and does not count."""
        record = NcsRecord.from_dict(ncs_entry("NCS", None))
        assert is_ncs_event_valid(self.declared_member(), record) is False


class TestNcsCounts:
    """Tests for NCS counting and the graduation requirement."""

    def test_valid_count(self):
        """Counts only valid records."""
        member = make_member(
            ordinaryADeclarationDate="2024-01-01T00:00:00",
            ncsEvents=[
                ncs_entry("A", "2023-12-31"),
                ncs_entry("B", "2024-01-01"),
                ncs_entry("C", "2024-02-01", session1=False),
            ],
        )
        assert valid_ncs_count(member) == 1
        assert total_ncs_count(member) == 3

    def test_ncs_attended_override_wins(self):
        """A stored ncsAttended is returned as is."""
        member = make_member(ncsAttended=7, ncsEvents=[ncs_entry("A", "2024-01-01")])
        assert valid_ncs_count(member) == 7

    def test_total_skips_no_session(self):
        """Records with neither session are not attended."""
        member = make_member(ncsEvents=[ncs_entry("A", "2024-01-01", session1=False, session2=False)])
        assert total_ncs_count(member) == 0

    @pytest.mark.parametrize(
        "tracks,expected",
        [
            (["ITT", "MBOT"], 5),
            (["ITT"], 3),
            (["MBOT"], 3),
            ([], 0),
            (["Other"], 0),
            (["itt", "ITT"], 3),
        ],
    )
    def test_required_count(self, tracks, expected):
        """5 for both tracks, 3 for one, 0 otherwise."""
        assert required_ncs_count(tracks) == expected

    def test_completed_with_one_track(self):
        """Three valid events complete a single track."""
        events = [ncs_entry(f"NCS {i}", f"2024-0{i}-01") for i in range(1, 4)]
        assert has_completed_ncs(make_member(tracks=["ITT"], ncsEvents=events)) is True
        assert has_completed_ncs(make_member(tracks=["ITT", "MBOT"], ncsEvents=events)) is False

    def test_no_tracks_never_completed(self):
        """Nothing is required without a track, so nothing is completed."""
        events = [ncs_entry("NCS", "2024-01-01")]
        assert has_completed_ncs(make_member(tracks=[], ncsEvents=events)) is False


class TestScholarship:
    """Tests for scholarship eligibility."""

    def test_ordinary_a_eligible(self):
        assert is_scholarship_eligible(make_member()) is True

    def test_exco_excluded(self):
        assert is_scholarship_eligible(make_member(isExco=True)) is False

    def test_already_awarded(self):
        assert is_scholarship_eligible(make_member(scholarshipAwarded=True)) is False

    def test_other_classes(self):
        assert is_scholarship_eligible(make_member(membership_type="Ordinary B")) is False
        assert is_scholarship_eligible(make_member(membership_type="Associate")) is False


class TestMemberFilter:
    """Tests for member filtering."""

    @pytest.fixture
    def members(self):
        return [
            make_member("m1", campus_id="01111111", full_name="ALICE LIM", tracks=["ITT"]),
            make_member(
                "m2",
                campus_id="02222222",
                full_name="BOB ONG",
                membership_type="Ordinary B",
                school="Law",
            ),
            make_member(
                "m3",
                campus_id="03333333",
                full_name="CAROL WEE",
                membership_type="Associate",
                admitYear=2022,
                tracks=["ITT", "MBOT"],
            ),
        ]

    def test_empty_filter_matches_all(self, members):
        assert len(MemberFilter().apply(members)) == 3

    def test_search_is_case_insensitive(self, members):
        """Search covers name, Campus ID and email."""
        assert [m.id for m in MemberFilter(search="alice").apply(members)] == ["m1"]
        assert [m.id for m in MemberFilter(search="0222").apply(members)] == ["m2"]
        assert [m.id for m in MemberFilter(search="03333333@SMU").apply(members)] == ["m3"]

    def test_membership_and_track(self, members):
        result = MemberFilter(membership_type=MembershipType.ORDINARY_B).apply(members)
        assert [m.id for m in result] == ["m2"]
        assert [m.id for m in MemberFilter(track="MBOT").apply(members)] == ["m3"]

    def test_school_and_admit_year(self, members):
        assert [m.id for m in MemberFilter(school="Law").apply(members)] == ["m2"]
        assert [m.id for m in MemberFilter(admit_year=2022).apply(members)] == ["m3"]

    def test_ncs_completed(self, members):
        """Nobody has NCS attendance, so nobody has completed."""
        assert MemberFilter(ncs_completed=True).apply(members) == []
        assert len(MemberFilter(ncs_completed=False).apply(members)) == 3


class TestMemberStats:
    """Tests for dashboard statistics."""

    def test_counts(self):
        members = [
            make_member("m1"),
            make_member("m2", isExco=True),
            make_member("m3", membership_type="Ordinary B"),
            make_member("m4", membership_type="Associate"),
        ]
        stats = MemberStats.from_members(members)
        assert stats.total == 4
        assert stats.ordinary_a == 2
        assert stats.ordinary_b == 1
        assert stats.associate == 1
        assert stats.scholarship_eligible == 1
        assert stats.to_dict()["ordinaryA"] == 2

    def test_empty(self):
        stats = MemberStats.from_members([])
        assert stats.total == 0
        assert stats.ncs_completed == 0
