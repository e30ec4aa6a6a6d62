"""
Spreadsheet row parsing, validation and normalization for member imports.

Rows arrive as header-keyed dicts (one per spreadsheet line, blank cells
omitted). Each row becomes either a MemberDraft ready for upsert or an
invalid entry listing every problem found on it.

Invariants:
    - Campus ID and Full Name are required in every mode
    - Enumerated values are matched case-insensitively against synonym
      tables; an unknown value is a validation error, never coerced
    - A Campus ID repeated within one input is an error on every occurrence
      after the first
    - Malformed track and ISM sub-entries are dropped silently
    - Partial mode writes only the columns present on the row
    - Drafts never put history lists in `fields` unless the row carries them,
      so re-importing a member does not wipe attendance recorded since

How to change safely:
    - Column headers are shared with exported files; keep them in step with
      spreadsheet.EXPORT_COLUMNS
    - New optional columns go into `_parse_optional`
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

from ..errors import ConflictError, ValidationError
from ..model import SUBSIDY_RATES, MembershipType, StudentStatus
from ..model.constants import (
    EXCO_SYNONYMS,
    MEMBERSHIP_TYPE_MAP,
    SCHOOL_NAME_MAP,
    SCHOOLS,
    STUDENT_STATUS_MAP,
    TRACK_MAP,
)

logger = logging.getLogger(__name__)

# Spreadsheet headers
COL_CAMPUS_ID = "Campus ID"
COL_FULL_NAME = "Full Name"
COL_SCHOOL_EMAIL = "School Email"
COL_PERSONAL_EMAIL = "Personal Email"
COL_ADMIT_YEAR = "Admit Year"
COL_MEMBERSHIP_TYPE = "Membership Type"
COL_STUDENT_STATUS = "Student Status"
COL_SCHOOL = "School"
COL_FIRST_DEGREE = "First Degree"
COL_SECOND_DEGREE = "Second Degree"
COL_TRACKS = "Tracks (comma-separated)"
COL_TELEGRAM = "Telegram Handle"
COL_ADDED_TO_TELEGRAM = "Added to Telegram Group (1=Yes, 0=No)"
COL_PHONE = "Phone Number"
COL_ISM_ATTENDANCE = "ISM Attendance"
COL_ISM_SIGNUP = "ISM Signup"
COL_CONTRIBUTION_PAID = "Contribution Paid"
COL_NCS_ATTENDED = "NCS Attended"
COL_ISS_ATTENDED = "ISS Attended"
COL_SCHOLARSHIP_AWARDED = "Scholarship Awarded"
COL_SCHOLARSHIP_YEAR = "Scholarship Year"
COL_REASON_ORDINARY_B = "Reason for Ordinary B"
COL_SUBSIDY_OVERRIDE = "Subsidy Override (%)"
COL_DECLARATION_DATE = "Ordinary A Declaration Date"

REQUIRED_ALWAYS = (COL_CAMPUS_ID, COL_FULL_NAME)
REQUIRED_FULL = (
    COL_SCHOOL_EMAIL,
    COL_SCHOOL,
    COL_ADMIT_YEAR,
    COL_MEMBERSHIP_TYPE,
    COL_FIRST_DEGREE,
)

# Free-text columns copied as trimmed strings.
TEXT_COLUMNS = {
    COL_FIRST_DEGREE: "firstDegree",
    COL_SECOND_DEGREE: "secondDegree",
    COL_SCHOLARSHIP_YEAR: "scholarshipYear",
    COL_REASON_ORDINARY_B: "reasonForOrdinaryB",
}

BOOLEAN_COLUMNS = {
    COL_ADDED_TO_TELEGRAM: "addedToTelegram",
    COL_ISM_SIGNUP: "ismSignup",
    COL_CONTRIBUTION_PAID: "contributionPaid",
    COL_SCHOLARSHIP_AWARDED: "scholarshipAwarded",
}

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
TRUE_VALUES = frozenset({"true", "1", "yes"})


class ImportMode(str, Enum):
    """full: every required column must be present; partial: sparse update."""

    FULL = "full"
    PARTIAL = "partial"


@dataclass
class MemberDraft:
    """A validated, normalized member ready for upsert.

    Attributes:
        campus_id: Natural key
        fields: Written on create and merged on update
        defaults: Written only when the member is created
        row: Spreadsheet row number the draft came from
    """

    campus_id: str
    fields: Dict[str, Any]
    defaults: Dict[str, Any] = field(default_factory=dict)
    row: int = 0


@dataclass
class InvalidRow:
    """A row rejected by validation, with every problem found on it."""

    row: int
    data: Dict[str, Any]
    errors: List[str]

    def to_dict(self) -> Dict[str, Any]:
        return {"row": self.row, "data": self.data, "errors": list(self.errors)}


@dataclass
class ParseResult:
    valid: List[MemberDraft] = field(default_factory=list)
    invalid: List[InvalidRow] = field(default_factory=list)
    total_rows: int = 0


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def cell_text(value: Any) -> str:
    """Cell value as trimmed text; whole floats lose their ".0"."""
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def parse_bool(value: Any) -> bool:
    """TRUE/true/1/yes are true; anything else, including blank, is false."""
    return cell_text(value).lower() in TRUE_VALUES


def parse_int(value: Any) -> Optional[int]:
    """Integer cell value, None when not a whole number."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    text = cell_text(value)
    if re.fullmatch(r"[+-]?\d+", text):
        return int(text)
    return None


def parse_tracks(value: Any) -> List[str]:
    """Comma-joined tracks; unknown entries are dropped."""
    tracks: List[str] = []
    for part in cell_text(value).split(","):
        track = TRACK_MAP.get(part.strip().lower())
        if track is not None and track.value not in tracks:
            tracks.append(track.value)
    return tracks


def parse_ism_attendance(value: Any, timestamp: Optional[str] = None) -> List[Dict[str, Any]]:
    """Comma-joined "event:subsidy" pairs.

    Entries without exactly one colon, with an empty event name or with a
    subsidy outside the tier set are dropped.
    """
    stamp = timestamp or _now_iso()
    records = []
    for entry in cell_text(value).split(","):
        parts = entry.strip().split(":")
        if len(parts) != 2:
            continue
        event_name = parts[0].strip()
        subsidy = parse_int(parts[1].strip())
        if not event_name or subsidy not in SUBSIDY_RATES:
            continue
        records.append({"eventName": event_name, "subsidyUsed": subsidy, "timestamp": stamp})
    return records


def parse_declaration_date(value: Any) -> Optional[str]:
    """Declaration date cell as an ISO instant, None when unparseable.

    Accepts spreadsheet dates, ISO strings and the dd/mm/yyyy form used by
    exports.
    """
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, date):
        return datetime.combine(value, time()).isoformat()

    text = cell_text(value)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        try:
            parsed = datetime.strptime(text, "%d/%m/%Y")
        except ValueError:
            return None
    return parsed.isoformat()


def normalize_membership(value: Any) -> Tuple[Optional[MembershipType], bool]:
    """Membership type and Exco flag from a cell, (None, False) if unknown."""
    key = cell_text(value).lower()
    if key in EXCO_SYNONYMS:
        return MembershipType.ORDINARY_A, True
    return MEMBERSHIP_TYPE_MAP.get(key), False


def format_phone(value: Any) -> str:
    return re.sub(r"\D", "", cell_text(value))


def format_telegram(value: Any) -> str:
    handle = cell_text(value)
    if not handle or handle.startswith("@"):
        return handle
    return f"@{handle}"


def create_defaults() -> Dict[str, Any]:
    """Fields every newly created member starts with."""
    return {
        "personalEmail": "",
        "telegramHandle": "",
        "phoneNumber": "",
        "addedToTelegram": False,
        "isExco": False,
        "studentStatus": StudentStatus.UNDERGRADUATE.value,
        "firstDegree": "",
        "secondDegree": "",
        "tracks": [],
        "ismAttendance": [],
        "ismSignup": False,
        "contributionPaid": False,
        "ncsEvents": [],
        "ncsTotalAttended": 0,
        "issEvents": [],
        "issAttended": 0,
        "scholarshipAwarded": False,
        "scholarshipYear": "",
        "reasonForOrdinaryB": "",
        "subsidyOverride": None,
        "dynamicFields": [],
    }


def _present(row: Dict[str, Any], column: str) -> bool:
    return cell_text(row.get(column)) != ""


def _parse_required(
    row: Dict[str, Any],
    mode: ImportMode,
    fields: Dict[str, Any],
    errors: List[str],
) -> None:
    for column in REQUIRED_ALWAYS:
        if not _present(row, column):
            errors.append(f"{column} is required")
    if mode == ImportMode.FULL:
        for column in REQUIRED_FULL:
            if not _present(row, column):
                errors.append(f"{column} is required")

    if _present(row, COL_FULL_NAME):
        fields["fullName"] = cell_text(row[COL_FULL_NAME]).upper()

    if _present(row, COL_SCHOOL_EMAIL):
        email = cell_text(row[COL_SCHOOL_EMAIL]).lower()
        if EMAIL_PATTERN.match(email):
            fields["schoolEmail"] = email
        else:
            errors.append(f"Invalid email format: {email}")

    if _present(row, COL_SCHOOL):
        raw = cell_text(row[COL_SCHOOL])
        school = SCHOOL_NAME_MAP.get(raw.lower())
        if school is None:
            errors.append(f"Invalid School '{raw}'. Must be one of: {', '.join(SCHOOLS)}")
        else:
            fields["school"] = school

    if _present(row, COL_ADMIT_YEAR):
        year = parse_int(row[COL_ADMIT_YEAR])
        if year is None:
            errors.append(f"Admit Year must be a whole number, got '{cell_text(row[COL_ADMIT_YEAR])}'")
        else:
            fields["admitYear"] = year

    if _present(row, COL_MEMBERSHIP_TYPE):
        raw = cell_text(row[COL_MEMBERSHIP_TYPE])
        membership, is_exco = normalize_membership(raw)
        if membership is None:
            allowed = ", ".join([t.value for t in MembershipType] + ["Exco"])
            errors.append(f"Invalid Membership Type '{raw}'. Must be one of: {allowed}")
        else:
            fields["membershipType"] = membership.value
            fields["isExco"] = is_exco


def _parse_optional(row: Dict[str, Any], fields: Dict[str, Any], errors: List[str]) -> None:
    if _present(row, COL_STUDENT_STATUS):
        raw = cell_text(row[COL_STUDENT_STATUS])
        status = STUDENT_STATUS_MAP.get(raw.lower())
        if status is None:
            allowed = ", ".join(s.value for s in StudentStatus)
            errors.append(f"Invalid Student Status '{raw}'. Must be one of: {allowed}")
        else:
            fields["studentStatus"] = status.value

    if _present(row, COL_PERSONAL_EMAIL):
        email = cell_text(row[COL_PERSONAL_EMAIL]).lower()
        if EMAIL_PATTERN.match(email):
            fields["personalEmail"] = email
        else:
            errors.append(f"Invalid personal email format: {email}")

    for column, wire in TEXT_COLUMNS.items():
        if _present(row, column):
            fields[wire] = cell_text(row[column])

    for column, wire in BOOLEAN_COLUMNS.items():
        if _present(row, column):
            fields[wire] = parse_bool(row[column])

    if _present(row, COL_TELEGRAM):
        fields["telegramHandle"] = format_telegram(row[COL_TELEGRAM])
    if _present(row, COL_PHONE):
        fields["phoneNumber"] = format_phone(row[COL_PHONE])

    if _present(row, COL_TRACKS):
        fields["tracks"] = parse_tracks(row[COL_TRACKS])
    if _present(row, COL_ISM_ATTENDANCE):
        fields["ismAttendance"] = parse_ism_attendance(row[COL_ISM_ATTENDANCE])

    for column, wire in ((COL_NCS_ATTENDED, "ncsAttended"), (COL_ISS_ATTENDED, "issAttended")):
        if _present(row, column):
            count = parse_int(row[column])
            if count is None or count < 0:
                errors.append(f"{column} must be a non-negative whole number")
            else:
                fields[wire] = count

    if _present(row, COL_SUBSIDY_OVERRIDE):
        override = parse_int(row[COL_SUBSIDY_OVERRIDE])
        # Values outside the tier set are ignored
        if override in SUBSIDY_RATES:
            fields["subsidyOverride"] = override

    if _present(row, COL_DECLARATION_DATE):
        declared = parse_declaration_date(row[COL_DECLARATION_DATE])
        if declared is None:
            errors.append(
                f"Invalid {COL_DECLARATION_DATE} '{cell_text(row[COL_DECLARATION_DATE])}'"
            )
        else:
            fields["ordinaryADeclarationDate"] = declared


def parse_member_row(
    row: Dict[str, Any],
    row_number: int,
    mode: ImportMode = ImportMode.FULL,
) -> MemberDraft:
    """Validate and normalize one row.

    Raises:
        ValidationError: With every problem found on the row in `errors`
    """
    errors: List[str] = []
    campus_id = cell_text(row.get(COL_CAMPUS_ID))
    fields: Dict[str, Any] = {"campusId": campus_id} if campus_id else {}

    _parse_required(row, mode, fields, errors)
    _parse_optional(row, fields, errors)

    if errors:
        raise ValidationError(f"Row {row_number} is invalid", errors=errors)

    return MemberDraft(
        campus_id=campus_id,
        fields=fields,
        defaults=create_defaults(),
        row=row_number,
    )


def parse_member_rows(
    rows: Iterable[Dict[str, Any]],
    mode: ImportMode | str = ImportMode.FULL,
) -> ParseResult:
    """Validate, normalize and deduplicate spreadsheet rows.

    Args:
        rows: Header-keyed rows, first data row first
        mode: full or partial

    Returns:
        ParseResult; row numbers count the header as row 1
    """
    mode = ImportMode(mode)
    result = ParseResult()
    seen_campus_ids: set[str] = set()

    for index, row in enumerate(rows):
        row_number = index + 2
        result.total_rows += 1
        errors: List[str] = []

        campus_id = cell_text(row.get(COL_CAMPUS_ID))
        if campus_id:
            if campus_id in seen_campus_ids:
                conflict = ConflictError(
                    f"Duplicate Campus ID {campus_id} in this file",
                    key=campus_id,
                )
                errors.append(conflict.message)
            else:
                seen_campus_ids.add(campus_id)

        try:
            draft = parse_member_row(row, row_number, mode)
        except ValidationError as e:
            errors.extend(e.errors)
            draft = None

        if errors or draft is None:
            result.invalid.append(InvalidRow(row=row_number, data=dict(row), errors=errors))
        else:
            result.valid.append(draft)

    logger.info(
        "Parsed import rows",
        extra={
            "mode": mode.value,
            "total_rows": result.total_rows,
            "valid": len(result.valid),
            "invalid": len(result.invalid),
        },
    )
    return result
