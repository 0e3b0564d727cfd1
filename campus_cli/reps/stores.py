"""
Storage adapters for Class Representative assignments.

The authoritative records live in the primary store. The legacy nested store
and the email-keyed index are older shapes that other screens still read, so
they are kept in step on a best-effort basis.
"""

from typing import Any, Callable, Dict, List, Optional

from campus_cli.store import DELETE_FIELD, DocumentSnapshot, DocumentStore, WriteBatch
from campus_cli.store import utc_timestamp
from campus_cli.store.paths import (
    USERS_COLLECTION,
    legacy_cr_collection,
    normalize_email,
    primary_cr_collection,
    user_path,
    year_key,
)

SLOT_1 = "slot-1"
SLOT_2 = "slot-2"
SLOTS = (SLOT_1, SLOT_2)

_SLOT_ALIASES = {
    "slot-1": SLOT_1,
    "slot1": SLOT_1,
    "cr-1": SLOT_1,
    "cr1": SLOT_1,
    "slot-2": SLOT_2,
    "slot2": SLOT_2,
    "cr-2": SLOT_2,
    "cr2": SLOT_2,
}

PASSWORD_RESET_MARKER = "PASSWORD_RESET_REQUIRED"
CR_ROLE = "class_representative"


def canonical_slot(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    return _SLOT_ALIASES.get(str(value).strip().lower())


def is_active(data: Dict[str, Any]) -> bool:
    # records written before the active flag existed are live assignments
    return data.get("active", True) is not False


def account_id_of(data: Dict[str, Any]) -> Optional[str]:
    return data.get("uid") or data.get("userId") or data.get("authUid")


def occupants_by_slot(
    snapshots: List[DocumentSnapshot],
) -> Dict[str, List[DocumentSnapshot]]:
    """Group active assignments by the slot they occupy.

    Records without a recognizable slot fill the free slots in assignment
    order; any left over are counted against slot-1.
    """
    occupants: Dict[str, List[DocumentSnapshot]] = {slot: [] for slot in SLOTS}
    unslotted = []
    ordered = sorted(
        (s for s in snapshots if is_active(s.data)),
        key=lambda s: (str(s.data.get("assignedAt") or ""), s.id),
    )
    for snap in ordered:
        slot = canonical_slot(snap.data.get("slot"))
        if slot:
            occupants[slot].append(snap)
        else:
            unslotted.append(snap)

    for snap in unslotted:
        free = next((slot for slot in SLOTS if not occupants[slot]), SLOT_1)
        occupants[free].append(snap)
    return occupants


class AssignmentStore:
    name = "assignments"

    def __init__(
        self, store: DocumentStore, collection_for: Callable[[int, str], str]
    ):
        self.store = store
        self._collection_for = collection_for

    def collection(self, level: int, department: str) -> str:
        return self._collection_for(level, department)

    def path(self, level: int, department: str, assignment_id: str) -> str:
        return f"{self.collection(level, department)}/{assignment_id}"

    def all(self, level: int, department: str) -> List[DocumentSnapshot]:
        return self.store.list(self.collection(level, department))

    def list_active(self, level: int, department: str) -> List[DocumentSnapshot]:
        return [s for s in self.all(level, department) if is_active(s.data)]

    def find_active_by_slot(
        self, level: int, department: str, slot: str
    ) -> List[DocumentSnapshot]:
        return occupants_by_slot(self.list_active(level, department))[slot]

    def find_by_student(
        self,
        level: int,
        department: str,
        student_id: Optional[str] = None,
        email: Optional[str] = None,
        active_only: bool = True,
    ) -> List[DocumentSnapshot]:
        email = normalize_email(email)
        snapshots = (
            self.list_active(level, department)
            if active_only
            else self.all(level, department)
        )
        return [
            s
            for s in snapshots
            if (student_id and s.data.get("studentId") == student_id)
            or (email and normalize_email(s.data.get("email")) == email)
        ]

    def upsert(
        self,
        batch: WriteBatch,
        level: int,
        department: str,
        assignment_id: str,
        fields: Dict[str, Any],
    ) -> None:
        batch.set(self.path(level, department, assignment_id), fields, merge=True)

    def deactivate(
        self,
        batch: WriteBatch,
        level: int,
        department: str,
        assignment_id: str,
        fields: Optional[Dict[str, Any]] = None,
    ) -> None:
        batch.set(
            self.path(level, department, assignment_id),
            {"active": False, "status": "inactive", **(fields or {})},
            merge=True,
        )

    def remove(
        self, batch: WriteBatch, level: int, department: str, assignment_id: str
    ) -> None:
        batch.delete(self.path(level, department, assignment_id))


class PrimaryAssignmentStore(AssignmentStore):
    name = "primary"

    def __init__(self, store: DocumentStore):
        super().__init__(store, primary_cr_collection)


class LegacyAssignmentStore(AssignmentStore):
    name = "legacy"

    def __init__(self, store: DocumentStore):
        super().__init__(store, legacy_cr_collection)


def find_account_by_profile_email(store: DocumentStore, email: str) -> Optional[str]:
    normalized = normalize_email(email)
    if not normalized:
        return None
    matches = store.list(USERS_COLLECTION, where={"email": normalized})
    return matches[0].id if matches else None


def resolve_account_id(store: DocumentStore, data: Dict[str, Any]) -> Optional[str]:
    return account_id_of(data) or find_account_by_profile_email(
        store, data.get("email", "")
    )


def grant_role_flags(
    batch: WriteBatch,
    account_id: str,
    *,
    email: str,
    name: str,
    level: int,
    department: str,
    slot: str,
    student_id: str,
    college_id: Optional[str] = None,
) -> None:
    batch.set(
        user_path(account_id),
        {
            "email": normalize_email(email),
            "name": name,
            "role": CR_ROLE,
            "isCR": True,
            "active": True,
            "crYear": year_key(level),
            "crYearLevel": level,
            "crDepartment": department,
            "crSlot": slot,
            "linkedStudentId": student_id,
            "collegeId": college_id,
            "updatedAt": utc_timestamp(),
        },
        merge=True,
    )


def clear_role_flags(
    batch: WriteBatch, account_id: str, extra: Optional[Dict[str, Any]] = None
) -> None:
    batch.set(
        user_path(account_id),
        {
            "role": "student",
            "isCR": False,
            "crYear": DELETE_FIELD,
            "crYearLevel": DELETE_FIELD,
            "crDepartment": DELETE_FIELD,
            "crSlot": DELETE_FIELD,
            "crCredentials": DELETE_FIELD,
            "updatedAt": utc_timestamp(),
            **(extra or {}),
        },
        merge=True,
    )
