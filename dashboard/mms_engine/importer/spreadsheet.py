"""
Spreadsheet I/O for member imports and exports (xlsx via openpyxl).

Reading yields header-keyed rows suitable for parse_member_rows(); writing
flattens members into the export column set, including derived eligibility
columns. An exported file can be imported back in partial mode.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List

from openpyxl import Workbook, load_workbook
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter

from ..eligibility import (
    is_scholarship_eligible,
    member_next_subsidy_rate,
    total_ncs_count,
    valid_ncs_count,
)
from ..model import Member, NcsRecord, calendar_date
from . import rows as cols

logger = logging.getLogger(__name__)

COL_TOTAL_ISM = "Total ISM Count"
COL_NEXT_SUBSIDY = "Next Subsidy Rate"
COL_TOTAL_NCS = "Total NCS Attended"
COL_VALID_NCS = "Valid NCS (Counting Toward Graduation)"
COL_NCS_EVENTS = "NCS Events (comma-separated)"
COL_ISS_EVENTS = "ISS Events (comma-separated)"
COL_SCHOLARSHIP_ELIGIBLE = "Scholarship Eligible"
COL_DYNAMIC_FIELDS = "Dynamic Fields"
COL_CREATED_AT = "Created At"
COL_UPDATED_AT = "Updated At"

# (header, column width)
EXPORT_COLUMNS = [
    (cols.COL_CAMPUS_ID, 12),
    (cols.COL_FULL_NAME, 24),
    (cols.COL_ADMIT_YEAR, 10),
    (cols.COL_STUDENT_STATUS, 15),
    (cols.COL_SCHOOL, 30),
    (cols.COL_FIRST_DEGREE, 20),
    (cols.COL_SECOND_DEGREE, 20),
    (cols.COL_MEMBERSHIP_TYPE, 15),
    (cols.COL_DECLARATION_DATE, 15),
    (cols.COL_TRACKS, 15),
    (cols.COL_SCHOOL_EMAIL, 28),
    (cols.COL_PERSONAL_EMAIL, 28),
    (cols.COL_TELEGRAM, 15),
    (cols.COL_ADDED_TO_TELEGRAM, 15),
    (cols.COL_PHONE, 15),
    (cols.COL_ISM_ATTENDANCE, 40),
    (COL_TOTAL_ISM, 12),
    (COL_NEXT_SUBSIDY, 15),
    (COL_TOTAL_NCS, 12),
    (COL_VALID_NCS, 15),
    (COL_NCS_EVENTS, 40),
    (cols.COL_ISS_ATTENDED, 12),
    (COL_ISS_EVENTS, 40),
    (COL_SCHOLARSHIP_ELIGIBLE, 18),
    (cols.COL_SCHOLARSHIP_AWARDED, 18),
    (cols.COL_SCHOLARSHIP_YEAR, 15),
    (cols.COL_REASON_ORDINARY_B, 25),
    (COL_DYNAMIC_FIELDS, 30),
    (COL_CREATED_AT, 22),
    (COL_UPDATED_AT, 22),
]


def read_member_rows(path: str | Path) -> List[Dict[str, Any]]:
    """Read the first worksheet into header-keyed rows.

    Blank cells are left out of each row and fully blank lines are skipped.

    Raises:
        FileNotFoundError: If the file does not exist
    """
    workbook = load_workbook(filename=str(path), read_only=True, data_only=True)
    try:
        sheet = workbook.worksheets[0]
        lines = sheet.iter_rows(values_only=True)
        header = next(lines, None)
        if header is None:
            return []
        headers = [cols.cell_text(h) for h in header]

        result = []
        for line in lines:
            row = {
                headers[i]: value
                for i, value in enumerate(line)
                if i < len(headers) and headers[i] and value is not None and value != ""
            }
            if row:
                result.append(row)
    finally:
        workbook.close()

    logger.info(f"Read {len(result)} rows from {path}")
    return result


def format_ncs_record(record: NcsRecord) -> str:
    """Export notation: plain name for a full two-session attendance,
    otherwise ``Name[sessions,F:reason]``."""
    parts = []
    if not (record.session1 and record.session2):
        sessions = [n for n, attended in (("1", record.session1), ("2", record.session2)) if attended]
        parts.append(",".join(sessions))
    if record.force_valid:
        parts.append(f"F:{record.force_valid_reason or ''}")
    if not parts:
        return record.event_name
    return f"{record.event_name}[{','.join(parts)}]"


def member_export_row(member: Member) -> Dict[str, Any]:
    """Flatten one member into export columns."""
    doc = member.document
    declared = calendar_date(member.ordinary_a_declaration_date)
    if member.is_exco:
        membership = "Exco"
    else:
        membership = member.membership_type.value if member.membership_type else ""
    dynamic = doc.get("dynamicFields") or []

    return {
        cols.COL_CAMPUS_ID: member.campus_id,
        cols.COL_FULL_NAME: member.full_name,
        cols.COL_ADMIT_YEAR: member.admit_year if member.admit_year is not None else "",
        cols.COL_STUDENT_STATUS: member.student_status or "",
        cols.COL_SCHOOL: member.school or "",
        cols.COL_FIRST_DEGREE: doc.get("firstDegree") or "",
        cols.COL_SECOND_DEGREE: doc.get("secondDegree") or "",
        cols.COL_MEMBERSHIP_TYPE: membership,
        cols.COL_DECLARATION_DATE: declared.strftime("%d/%m/%Y") if declared else "",
        cols.COL_TRACKS: ", ".join(member.tracks),
        cols.COL_SCHOOL_EMAIL: member.school_email,
        cols.COL_PERSONAL_EMAIL: doc.get("personalEmail") or "",
        cols.COL_TELEGRAM: doc.get("telegramHandle") or "",
        cols.COL_ADDED_TO_TELEGRAM: 1 if doc.get("addedToTelegram") else 0,
        cols.COL_PHONE: doc.get("phoneNumber") or "",
        cols.COL_ISM_ATTENDANCE: ", ".join(
            f"{r.event_name}:{r.subsidy_used}" for r in member.ism_attendance
        ),
        COL_TOTAL_ISM: len(member.ism_attendance),
        COL_NEXT_SUBSIDY: f"{member_next_subsidy_rate(member)}%",
        COL_TOTAL_NCS: (
            member.ncs_total_attended
            if member.ncs_total_attended is not None
            else total_ncs_count(member)
        ),
        COL_VALID_NCS: valid_ncs_count(member),
        COL_NCS_EVENTS: ", ".join(format_ncs_record(r) for r in member.ncs_events),
        cols.COL_ISS_ATTENDED: member.iss_attended or 0,
        COL_ISS_EVENTS: "; ".join(r.event_name for r in member.iss_events),
        COL_SCHOLARSHIP_ELIGIBLE: "YES" if is_scholarship_eligible(member) else "NO",
        cols.COL_SCHOLARSHIP_AWARDED: "TRUE" if member.scholarship_awarded else "FALSE",
        cols.COL_SCHOLARSHIP_YEAR: doc.get("scholarshipYear") or "",
        cols.COL_REASON_ORDINARY_B: doc.get("reasonForOrdinaryB") or "",
        COL_DYNAMIC_FIELDS: "; ".join(
            f"{f.get('key')}: {f.get('value')}" for f in dynamic if isinstance(f, dict)
        ),
        COL_CREATED_AT: doc.get("createdAt") or "",
        COL_UPDATED_AT: doc.get("updatedAt") or "",
    }


def export_members(members: Iterable[Member], path: str | Path, sheet_title: str = "Members") -> int:
    """Write members to an xlsx file.

    Args:
        members: Members to export, in row order
        path: Destination file; parent directories must exist
        sheet_title: Worksheet name

    Returns:
        Number of member rows written
    """
    wb = Workbook()
    ws = wb.active
    ws.title = sheet_title

    header_font = Font(bold=True)
    header_fill = PatternFill("solid", fgColor="FFF2CC")
    for c, (header, width) in enumerate(EXPORT_COLUMNS, start=1):
        cell = ws.cell(row=1, column=c, value=header)
        cell.font = header_font
        cell.fill = header_fill
        cell.alignment = Alignment(horizontal="center", vertical="center", wrap_text=True)
        ws.column_dimensions[get_column_letter(c)].width = width

    count = 0
    for member in members:
        row = member_export_row(member)
        ws.append([row[header] for header, _ in EXPORT_COLUMNS])
        count += 1

    ws.freeze_panes = ws.cell(row=2, column=1)
    wb.save(str(path))
    wb.close()

    logger.info(f"Exported {count} members to {path}")
    return count
