"""
Integration tests for xlsx import and export.

Tests cover:
- Reading header-keyed rows from a workbook
- Export of derived columns
- Re-importing an export in partial mode
"""

import pytest
from openpyxl import Workbook, load_workbook

from dashboard.mms_engine.importer import (
    ImportMode,
    export_members,
    member_export_row,
    parse_member_rows,
    read_member_rows,
)
from dashboard.mms_engine.importer.spreadsheet import EXPORT_COLUMNS, format_ncs_record
from dashboard.mms_engine.model import NcsRecord
from tests.factories import make_member, ncs_entry


def write_sheet(path, header, rows):
    wb = Workbook()
    ws = wb.active
    ws.append(header)
    for row in rows:
        ws.append(row)
    wb.save(str(path))


class TestReadMemberRows:
    """Tests for reading spreadsheets."""

    def test_header_keyed_rows(self, tmp_path):
        path = tmp_path / "members.xlsx"
        write_sheet(
            path,
            ["Campus ID", "Full Name", "Admit Year"],
            [["01234567", "Jane", 2023], [None, None, None], ["07654321", "Ben", None]],
        )

        rows = read_member_rows(path)

        assert rows == [
            {"Campus ID": "01234567", "Full Name": "Jane", "Admit Year": 2023},
            {"Campus ID": "07654321", "Full Name": "Ben"},
        ]

    def test_empty_sheet(self, tmp_path):
        path = tmp_path / "empty.xlsx"
        Workbook().save(str(path))
        assert read_member_rows(path) == []

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            read_member_rows(tmp_path / "nope.xlsx")


class TestExport:
    """Tests for member export."""

    def test_ncs_notation(self):
        assert format_ncs_record(NcsRecord.from_dict(ncs_entry("A", "2024-01-01"))) == "A"
        partial = NcsRecord.from_dict(ncs_entry("B", "2024-01-01", session2=False))
        assert format_ncs_record(partial) == "B[1]"
        forced = NcsRecord.from_dict(
            ncs_entry("C", "2024-01-01", session1=False, session2=False, forceValid=True, forceValidReason="MC")
        )
        assert format_ncs_record(forced) == "C[,F:MC]"

    def test_derived_columns(self):
        member = make_member(
            isExco=True,
            ordinaryADeclarationDate="2024-01-15T00:00:00",
            tracks=["ITT"],
            ismAttendance=[{"eventName": "ISM 1", "subsidyUsed": 95}],
            ncsEvents=[ncs_entry("NCS 1", "2024-02-01")],
            issEvents=[{"eventName": "ISS 1", "date": "2024-03-01"}, {"eventName": "ISS 2", "date": None}],
        )

        row = member_export_row(member)

        assert row["Membership Type"] == "Exco"
        assert row["Ordinary A Declaration Date"] == "15/01/2024"
        assert row["ISM Attendance"] == "ISM 1:95"
        assert row["Next Subsidy Rate"] == "95%"
        assert row["Total NCS Attended"] == 1
        assert row["Valid NCS (Counting Toward Graduation)"] == 1
        assert row["ISS Events (comma-separated)"] == "ISS 1; ISS 2"
        assert row["Scholarship Eligible"] == "NO"
        assert set(row) == {header for header, _ in EXPORT_COLUMNS}

    def test_export_writes_workbook(self, tmp_path):
        path = tmp_path / "export.xlsx"
        count = export_members([make_member("m1"), make_member("m2", campus_id="2")], path)

        assert count == 2
        ws = load_workbook(str(path)).active
        assert ws.title == "Members"
        assert ws.cell(row=1, column=1).value == "Campus ID"
        assert ws.cell(row=1, column=1).font.bold
        assert ws.max_row == 3
        assert ws.freeze_panes == "A2"

    def test_export_reimports_in_partial_mode(self, tmp_path):
        """An exported file parses cleanly back into drafts."""
        path = tmp_path / "export.xlsx"
        member = make_member(
            "m1",
            full_name="JANE TAN",
            membership_type="Ordinary B",
            school="Law",
            admitYear=2022,
            ismAttendance=[{"eventName": "ISM 1", "subsidyUsed": 70}],
            scholarshipAwarded=True,
        )
        export_members([member], path)

        result = parse_member_rows(read_member_rows(path), ImportMode.PARTIAL)

        assert result.invalid == []
        fields = result.valid[0].fields
        assert fields["campusId"] == "01234567"
        assert fields["fullName"] == "JANE TAN"
        assert fields["membershipType"] == "Ordinary B"
        assert fields["school"] == "Law"
        assert fields["admitYear"] == 2022
        assert fields["scholarshipAwarded"] is True
        assert fields["ismAttendance"][0]["subsidyUsed"] == 70
