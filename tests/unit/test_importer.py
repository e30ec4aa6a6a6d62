"""
Unit tests for member import parsing and upsert.

Tests cover:
- Required columns in full and partial modes
- Normalization of enumerations, names, emails, phones and handles
- In-file duplicate Campus IDs
- Silent dropping of malformed tracks and ISM entries
- Upsert tagging (added / updated / failed) and progress reporting
"""

import pytest

from dashboard.mms_engine.errors import StoreError, ValidationError
from dashboard.mms_engine.importer import (
    ImportMode,
    MemberImporter,
    parse_member_row,
    parse_member_rows,
)
from dashboard.mms_engine.importer.reconciler import progress_percentage
from dashboard.mms_engine.importer.rows import (
    format_phone,
    format_telegram,
    parse_bool,
    parse_declaration_date,
    parse_ism_attendance,
    parse_tracks,
)
from dashboard.mms_engine.store import InMemoryDocumentStore


def full_row(campus_id="01234567", **overrides):
    row = {
        "Campus ID": campus_id,
        "Full Name": "jane tan",
        "School Email": f"Jane.{campus_id}@SMU.edu.sg",
        "School": "Business",
        "Admit Year": 2023,
        "Membership Type": "Ordinary A",
        "First Degree": "BBM",
    }
    row.update(overrides)
    return row


class TestCellParsers:
    """Tests for individual cell parsers."""

    def test_parse_bool(self):
        """TRUE, 1 and yes are true; everything else is false."""
        assert parse_bool("TRUE") is True
        assert parse_bool(1) is True
        assert parse_bool("Yes") is True
        assert parse_bool("0") is False
        assert parse_bool(None) is False
        assert parse_bool("maybe") is False

    def test_parse_tracks_drops_unknown(self):
        """Unknown tracks vanish; known ones are canonicalized once."""
        assert parse_tracks("itt, Robotics, MBOT, ITT") == ["ITT", "MBOT"]
        assert parse_tracks("") == []

    def test_parse_ism_attendance_drops_malformed(self):
        """Entries need exactly one colon, a name and a tier subsidy."""
        records = parse_ism_attendance(
            "ISM 1:90, broken, ISM 2:42, :70, ISM 3:70:1, ISM 4:50",
            timestamp="2024-01-01T00:00:00Z",
        )
        assert records == [
            {"eventName": "ISM 1", "subsidyUsed": 90, "timestamp": "2024-01-01T00:00:00Z"},
            {"eventName": "ISM 4", "subsidyUsed": 50, "timestamp": "2024-01-01T00:00:00Z"},
        ]

    def test_format_phone_and_telegram(self):
        assert format_phone("+65 9123-4567") == "6591234567"
        assert format_telegram("janetan") == "@janetan"
        assert format_telegram("@janetan") == "@janetan"

    def test_parse_declaration_date(self):
        """ISO and dd/mm/yyyy are both accepted."""
        assert parse_declaration_date("2024-01-15").startswith("2024-01-15")
        assert parse_declaration_date("15/01/2024").startswith("2024-01-15")
        assert parse_declaration_date("next week") is None


class TestParseMemberRow:
    """Tests for single-row validation and normalization."""

    def test_full_row_normalized(self):
        """Names upper-cased, emails lower-cased, enums canonical."""
        draft = parse_member_row(
            full_row(
                **{
                    "Student Status": "postgrad",
                    "Telegram Handle": "janetan",
                    "Phone Number": "9123 4567",
                    "Tracks (comma-separated)": "itt",
                }
            ),
            row_number=2,
        )
        assert draft.campus_id == "01234567"
        assert draft.fields["fullName"] == "JANE TAN"
        assert draft.fields["schoolEmail"] == "jane.01234567@smu.edu.sg"
        assert draft.fields["membershipType"] == "Ordinary A"
        assert draft.fields["isExco"] is False
        assert draft.fields["studentStatus"] == "Postgraduate"
        assert draft.fields["telegramHandle"] == "@janetan"
        assert draft.fields["phoneNumber"] == "91234567"
        assert draft.fields["tracks"] == ["ITT"]
        assert draft.row == 2

    def test_exco_maps_to_ordinary_a_flag(self):
        draft = parse_member_row(full_row(**{"Membership Type": "EXCO"}), row_number=2)
        assert draft.fields["membershipType"] == "Ordinary A"
        assert draft.fields["isExco"] is True

    def test_school_synonym(self):
        draft = parse_member_row(full_row(School="scis"), row_number=2)
        assert draft.fields["school"] == "Computing & Information Systems"

    def test_history_lists_only_in_defaults(self):
        """A row without history columns must not overwrite history."""
        draft = parse_member_row(full_row(), row_number=2)
        assert "ismAttendance" not in draft.fields
        assert "ncsEvents" not in draft.fields
        assert draft.defaults["ismAttendance"] == []
        assert draft.defaults["studentStatus"] == "Undergraduate"

    def test_every_error_reported(self):
        """All problems on a row are listed together."""
        row = full_row(
            **{
                "School Email": "not-an-email",
                "Membership Type": "Gold",
                "Admit Year": "twenty",
                "School": "Medicine",
            }
        )
        with pytest.raises(ValidationError) as exc_info:
            parse_member_row(row, row_number=5)
        errors = exc_info.value.errors
        assert len(errors) == 4
        assert any("Invalid email format" in e for e in errors)
        assert any("Membership Type" in e for e in errors)
        assert any("Admit Year" in e for e in errors)
        assert any("School" in e for e in errors)

    def test_full_mode_requires_columns(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_member_row({"Campus ID": "01234567", "Full Name": "Jane"}, row_number=2)
        assert "School Email is required" in exc_info.value.errors
        assert "First Degree is required" in exc_info.value.errors

    def test_partial_mode_only_present_columns(self):
        """Partial rows carry only what they have."""
        draft = parse_member_row(
            {"Campus ID": "01234567", "Full Name": "Jane", "NCS Attended": 4},
            row_number=2,
            mode=ImportMode.PARTIAL,
        )
        assert draft.fields == {"campusId": "01234567", "fullName": "JANE", "ncsAttended": 4}

    def test_partial_mode_still_needs_identity(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_member_row({"Full Name": "Jane"}, row_number=2, mode=ImportMode.PARTIAL)
        assert "Campus ID is required" in exc_info.value.errors

    def test_negative_counter_rejected(self):
        with pytest.raises(ValidationError):
            parse_member_row(full_row(**{"ISS Attended": -1}), row_number=2)

    def test_subsidy_override_outside_tiers_ignored(self):
        draft = parse_member_row(full_row(**{"Subsidy Override (%)": 42}), row_number=2)
        assert "subsidyOverride" not in draft.fields
        draft = parse_member_row(full_row(**{"Subsidy Override (%)": "50"}), row_number=2)
        assert draft.fields["subsidyOverride"] == 50

    def test_invalid_declaration_date(self):
        with pytest.raises(ValidationError):
            parse_member_row(full_row(**{"Ordinary A Declaration Date": "soon"}), row_number=2)


class TestParseMemberRows:
    """Tests for batch parsing."""

    def test_row_numbers_start_at_two(self):
        result = parse_member_rows([full_row("1"), {"Full Name": "x"}])
        assert result.total_rows == 2
        assert [d.row for d in result.valid] == [2]
        assert result.invalid[0].row == 3

    def test_duplicate_campus_id_second_row_invalid(self):
        """The first occurrence is kept, later ones are errors."""
        result = parse_member_rows([full_row("1"), full_row("2"), full_row("1"), full_row("1")])
        assert [d.campus_id for d in result.valid] == ["1", "2"]
        assert [i.row for i in result.invalid] == [4, 5]
        assert result.invalid[0].errors == ["Duplicate Campus ID 1 in this file"]

    def test_invalid_first_row_still_claims_campus_id(self):
        """A Campus ID seen on an invalid row still counts as seen."""
        result = parse_member_rows([full_row("1", School="Medicine"), full_row("1")])
        assert result.valid == []
        assert len(result.invalid) == 2

    def test_mode_accepts_string(self):
        result = parse_member_rows([{"Campus ID": "1", "Full Name": "a"}], "partial")
        assert len(result.valid) == 1

    def test_invalid_row_keeps_data(self):
        result = parse_member_rows([{"Full Name": "nobody"}])
        assert result.invalid[0].to_dict()["data"] == {"Full Name": "nobody"}


class TestMemberImporter:
    """Tests for upsert against the store."""

    @pytest.fixture
    async def store(self):
        store = InMemoryDocumentStore()
        await store.connect()
        yield store
        await store.close()

    @pytest.mark.asyncio
    async def test_new_members_added(self, store):
        drafts = parse_member_rows([full_row("1"), full_row("2")]).valid
        summary = await MemberImporter(store).import_members(drafts)

        assert len(summary.added) == 2
        assert summary.success
        docs = await store.query("members", order_by="campusId")
        assert [d["campusId"] for d in docs] == ["1", "2"]
        assert docs[0]["ncsEvents"] == []
        assert "createdAt" in docs[0] and "updatedAt" in docs[0]

    @pytest.mark.asyncio
    async def test_reimport_updates_and_keeps_history(self, store):
        """A second import of the same Campus ID is an update."""
        importer = MemberImporter(store)
        await importer.import_members(parse_member_rows([full_row("1")]).valid)
        docs = await store.query("members")
        member_id = docs[0]["id"]
        created_at = docs[0]["createdAt"]
        await store.update("members", member_id, {"ncsEvents": [{"eventName": "NCS 1"}]})

        summary = await importer.import_members(
            parse_member_rows([full_row("1", **{"Full Name": "jane lee"})]).valid
        )

        assert len(summary.updated) == 1
        assert summary.updated[0].member_id == member_id
        doc = await store.get("members", member_id)
        assert doc["fullName"] == "JANE LEE"
        assert doc["ncsEvents"] == [{"eventName": "NCS 1"}]
        assert doc["createdAt"] == created_at
        assert store.document_count("members") == 1

    @pytest.mark.asyncio
    async def test_failures_collected(self, store):
        """A failing row is reported and the rest still import."""
        store.inject_failure("upsert_by_field", StoreError("permission denied"))
        drafts = parse_member_rows([full_row("1"), full_row("2")]).valid
        summary = await MemberImporter(store, concurrency=1).import_members(drafts)

        assert len(summary.failed) == 1
        assert summary.failed[0].error == "permission denied"
        assert len(summary.added) == 1
        assert summary.success is False
        assert summary.to_dict()["failed"][0]["row"] == summary.failed[0].row

    @pytest.mark.asyncio
    async def test_progress_reported_per_row(self, store):
        drafts = parse_member_rows([full_row(str(i)) for i in range(3)]).valid
        seen = []
        await MemberImporter(store).import_members(drafts, on_progress=seen.append)

        assert [p.current for p in seen] == [1, 2, 3]
        assert [p.percentage for p in seen] == [33, 67, 100]
        assert all(p.total == 3 for p in seen)

    @pytest.mark.asyncio
    async def test_empty_import(self, store):
        summary = await MemberImporter(store).import_members([])
        assert summary.outcomes == []


class TestProgressPercentage:
    """Tests for progress rounding."""

    def test_rounds_half_up(self):
        assert progress_percentage(1, 8) == 13
        assert progress_percentage(1, 3) == 33
        assert progress_percentage(2, 3) == 67

    def test_zero_total(self):
        assert progress_percentage(0, 0) == 100
