"""Document paths for every collection the campus core reads or writes."""

import re
from typing import Any, Dict, Optional

SETTINGS_DOC_PATH = "settings/academicYear"
PROMOTIONS_COLLECTION = "promotions"
GRADUATES_COLLECTION = "graduatedStudents"
USERS_COLLECTION = "users"
LEGACY_INDEX_COLLECTION = "classRepresentatives"


def year_id(level: int) -> str:
    """Student partition key, e.g. ``year3``."""
    return f"year{level}"


def year_key(level: int) -> str:
    """CR partition key, e.g. ``year_3``."""
    return f"year_{level}"


def students_collection(level: int, department: str) -> str:
    return f"students/{year_id(level)}/departments/{department}/students"


def student_path(level: int, department: str, student_id: str) -> str:
    return f"{students_collection(level, department)}/{student_id}"


def graduate_path(archive_id: str) -> str:
    return f"{GRADUATES_COLLECTION}/{archive_id}"


def promotion_journal_path(target_year: int) -> str:
    return f"{PROMOTIONS_COLLECTION}/{target_year}"


def primary_cr_collection(level: int, department: str) -> str:
    return f"classrepresentative/{year_key(level)}/department_{department}"


def legacy_cr_collection(level: int, department: str) -> str:
    return f"{LEGACY_INDEX_COLLECTION}/{year_id(level)}/departments/{department}/reps"


def user_path(account_id: str) -> str:
    return f"{USERS_COLLECTION}/{account_id}"


def normalize_email(value: Optional[str]) -> str:
    return str(value or "").strip().lower()


def email_doc_id(email: str) -> str:
    return re.sub(r"[@.]", "_", normalize_email(email))


def legacy_index_path(email: str) -> str:
    return f"{LEGACY_INDEX_COLLECTION}/{email_doc_id(email)}"


def student_id_for(student: Dict[str, Any]) -> str:
    """Stable student identifier; derived from the roll number when not stored."""
    if student.get("id"):
        return str(student["id"])
    roll = str(student.get("rollNo") or "").strip().lower()
    if not roll:
        raise ValueError("Student has neither an id nor a roll number")
    return "student_" + re.sub(r"\s+", "_", roll)
