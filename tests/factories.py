"""Document builders shared by the test suite."""

from typing import Any, Dict, Optional

from dashboard.mms_engine.model import Member


def member_doc(
    campus_id: str = "01234567",
    full_name: str = "JANE TAN",
    membership_type: str = "Ordinary A",
    **fields: Any,
) -> Dict[str, Any]:
    """Member document with the minimum fields every member carries."""
    doc: Dict[str, Any] = {
        "campusId": campus_id,
        "fullName": full_name,
        "schoolEmail": f"{campus_id}@smu.edu.sg",
        "membershipType": membership_type,
        "isExco": False,
        "tracks": [],
        "ismAttendance": [],
        "ncsEvents": [],
        "issEvents": [],
    }
    doc.update(fields)
    return doc


def make_member(member_id: Optional[str] = "m1", **fields: Any) -> Member:
    """Typed member built from member_doc()."""
    return Member.from_document({"id": member_id, **member_doc(**fields)})


def ncs_entry(
    name: str,
    date: Optional[str],
    session1: bool = True,
    session2: bool = True,
    **extra: Any,
) -> Dict[str, Any]:
    entry = {"eventName": name, "date": date, "session1": session1, "session2": session2}
    entry.update(extra)
    return entry


def event_doc(name: str, date: str, event_type: str, **fields: Any) -> Dict[str, Any]:
    doc: Dict[str, Any] = {"name": name, "date": date, "type": event_type, "attendance": {}}
    doc.update(fields)
    return doc
