"""
Rebuild CR projections from the assignment documents.

The student ``isRepresentative`` flag and the account role flags are derived
data. ``ProjectionRepairer`` recomputes them for every partition and fixes
any drift; it also deactivates surplus occupants of a slot.
"""

from typing import Any, Dict, List, Optional, Set, Tuple

from campus_cli.config import YEAR_LEVELS, Settings
from campus_cli.exceptions import DocumentNotFoundError
from campus_cli.promotion.concurrent import chunked
from campus_cli.reps.stores import (
    CR_ROLE,
    SLOTS,
    PrimaryAssignmentStore,
    clear_role_flags,
    grant_role_flags,
    occupants_by_slot,
    resolve_account_id,
)
from campus_cli.results import OperationResult
from campus_cli.store import DELETE_FIELD, DocumentStore, utc_timestamp
from campus_cli.store.paths import (
    USERS_COLLECTION,
    normalize_email,
    student_path,
    students_collection,
    year_key,
)
from campus_cli.utils.logging_config import get_logger

logger = get_logger(__name__)

# (kind, path or account id, payload)
Fix = Tuple[str, str, Dict[str, Any]]


class ProjectionRepairer:
    def __init__(self, store: DocumentStore, settings: Settings):
        self.store = store
        self.settings = settings
        self.primary = PrimaryAssignmentStore(store)

    def repair(
        self,
        acting_identity: str = "system",
        levels: Optional[List[int]] = None,
        departments: Optional[List[str]] = None,
    ) -> OperationResult:
        levels = levels or YEAR_LEVELS
        departments = departments or self.settings.departments
        flagged_accounts = {
            snap.id: snap.data
            for snap in self.store.list(USERS_COLLECTION, where={"isCR": True})
        }

        totals = {
            "conflictsResolved": 0,
            "studentFlagsSet": 0,
            "studentFlagsCleared": 0,
            "roleFlagsGranted": 0,
            "roleFlagsCleared": 0,
        }
        holder_accounts: Set[str] = set()
        try:
            for level in levels:
                for dept in departments:
                    fixes, accounts = self._plan_partition(
                        level, dept, flagged_accounts, acting_identity, totals
                    )
                    holder_accounts |= accounts
                    self._apply(fixes)
        except DocumentNotFoundError as e:
            logger.warning(f"Projection repair stopped: {e}")
            return OperationResult.fail(
                f"{e}. A document moved during repair; run repair again.", **totals
            )

        scanned = set(levels) == set(YEAR_LEVELS) and set(departments) == set(
            self.settings.departments
        )
        stale = [
            account_id
            for account_id, data in flagged_accounts.items()
            if account_id not in holder_accounts
            and (
                scanned
                or (
                    data.get("crYearLevel") in levels
                    and data.get("crDepartment") in departments
                )
            )
        ]
        self._apply([("clear", account_id, {}) for account_id in stale])
        totals["roleFlagsCleared"] += len(stale)

        repaired = sum(totals.values())
        logger.info(f"Projection repair by {acting_identity}: {totals}")
        return OperationResult.ok(
            f"Repaired {repaired} CR projections" if repaired else "CR projections are consistent",
            **totals,
        )

    def _plan_partition(
        self,
        level: int,
        dept: str,
        flagged_accounts: Dict[str, Dict[str, Any]],
        acting_identity: str,
        totals: Dict[str, int],
    ) -> Tuple[List[Fix], Set[str]]:
        fixes: List[Fix] = []
        accounts: Set[str] = set()
        now = utc_timestamp()
        occupants = occupants_by_slot(self.primary.list_active(level, dept))
        holder_students: Set[str] = set()

        for slot in SLOTS:
            if not occupants[slot]:
                continue
            holder, *surplus = occupants[slot]
            for extra in surplus:
                logger.warning(
                    f"{year_key(level)}/{dept} {slot} has more than one active CR, deactivating {extra.id}"
                )
                fixes.append(
                    (
                        "update",
                        self.primary.path(level, dept, extra.id),
                        {
                            "active": False,
                            "status": "conflict",
                            "revokedAt": now,
                            "revokedBy": acting_identity,
                        },
                    )
                )
                totals["conflictsResolved"] += 1

            student_id = holder.data.get("studentId")
            if student_id:
                holder_students.add(student_id)
                student = self.store.get(student_path(level, dept, student_id))
                if student is not None and student.get("isRepresentative") is not True:
                    fixes.append(
                        (
                            "update",
                            student_path(level, dept, student_id),
                            {"isRepresentative": True, "updatedAt": now},
                        )
                    )
                    totals["studentFlagsSet"] += 1

            account_id = resolve_account_id(self.store, holder.data)
            if not account_id:
                continue
            accounts.add(account_id)
            profile = flagged_accounts.get(account_id) or {}
            if (
                profile.get("role") != CR_ROLE
                or profile.get("crYearLevel") != level
                or profile.get("crDepartment") != dept
                or profile.get("crSlot") != slot
            ):
                fixes.append(
                    (
                        "grant",
                        account_id,
                        {
                            "email": holder.data.get("email", ""),
                            "name": holder.data.get("name") or "",
                            "level": level,
                            "department": dept,
                            "slot": slot,
                            "student_id": student_id or "",
                            "college_id": holder.data.get("collegeId"),
                        },
                    )
                )
                totals["roleFlagsGranted"] += 1

        for student in self.store.list(
            students_collection(level, dept), where={"isRepresentative": True}
        ):
            if student.id not in holder_students:
                fixes.append(
                    (
                        "update",
                        student.path,
                        {"isRepresentative": False, "crSlot": DELETE_FIELD, "updatedAt": now},
                    )
                )
                totals["studentFlagsCleared"] += 1
        return fixes, accounts

    def _apply(self, fixes: List[Fix]) -> None:
        for chunk in chunked(fixes, self.store.max_batch_operations):
            batch = self.store.batch()
            for kind, target, payload in chunk:
                if kind == "update":
                    batch.update(target, payload)
                elif kind == "grant":
                    grant_role_flags(batch, target, **payload)
                else:
                    clear_role_flags(batch, target)
            batch.commit()


def resolve_cr_access(
    store: DocumentStore, settings: Settings, email: str
) -> OperationResult:
    """Decide whether ``email`` belongs to an active Class Representative.

    The assignment documents decide. The account role flags are only used to
    find the right partition quickly; if they point nowhere, every partition
    is scanned.
    """
    normalized = normalize_email(email)
    if not normalized:
        return OperationResult.fail("Email is required", valid=False)

    primary = PrimaryAssignmentStore(store)
    profiles = store.list(USERS_COLLECTION, where={"email": normalized})
    profile = profiles[0].data if profiles else {}

    hinted_level = profile.get("crYearLevel")
    hinted_dept = profile.get("crDepartment")
    if hinted_level in YEAR_LEVELS and hinted_dept in settings.departments:
        matches = primary.find_by_student(hinted_level, hinted_dept, email=normalized)
        if matches:
            return _access_granted(matches[0].data, hinted_level, hinted_dept, False)

    for level in YEAR_LEVELS:
        for dept in settings.departments:
            matches = primary.find_by_student(level, dept, email=normalized)
            if matches:
                logger.warning(
                    f"Role flags for {normalized} are stale, found CR record in {year_key(level)}/{dept}"
                )
                return _access_granted(matches[0].data, level, dept, True)

    if profile.get("isCR"):
        logger.warning(f"{normalized} carries CR role flags without an active assignment")
    return OperationResult.fail(
        "No active Class Representative assignment for this account", valid=False
    )


def _access_granted(
    data: Dict[str, Any], level: int, dept: str, flags_stale: bool
) -> OperationResult:
    return OperationResult.ok(
        "Active Class Representative",
        valid=True,
        yearLevel=level,
        year=year_key(level),
        department=dept,
        slot=data.get("slot"),
        studentId=data.get("studentId"),
        flagsStale=flags_stale,
    )

