from typing import Any, Dict, List, Optional

from campus_cli.config import YEAR_LEVELS
from campus_cli.exceptions import DocumentNotFoundError, PreconditionError, ValidationError
from campus_cli.reps.assignments import ClassRepManager
from campus_cli.reps.stores import (
    SLOTS,
    DocumentSnapshot,
    canonical_slot,
    grant_role_flags,
    is_active,
    occupants_by_slot,
    resolve_account_id,
)
from campus_cli.results import OperationResult
from campus_cli.store import DELETE_FIELD, utc_timestamp
from campus_cli.store.paths import (
    normalize_email,
    student_path,
    students_collection,
    user_path,
    year_key,
)
from campus_cli.utils.logging_config import get_logger

logger = get_logger(__name__)


class ReactivationService:
    """Bring a deactivated Class Representative back into their slot."""

    def __init__(self, manager: ClassRepManager):
        self.manager = manager
        self.store = manager.store
        self.primary = manager.primary
        self.legacy = manager.legacy

    def reactivate(
        self, email: str, level: int, dept: str, acting_identity: str
    ) -> OperationResult:
        try:
            self.manager.validate_partition(level, dept)
            normalized = normalize_email(email)
            if not normalized:
                raise ValidationError("Email is required to reactivate a Class Representative.")
            record = self._latest_record(normalized, level, dept)
            if is_active(record.data):
                return OperationResult.ok(
                    f"{normalized} is already an active Class Representative",
                    assignmentId=record.id,
                    slot=record.data.get("slot"),
                )
            slot = self._free_slot_for(record, level, dept)
        except (ValidationError, PreconditionError) as e:
            logger.warning(f"Reactivation of {email} in {year_key(level)}/{dept} rejected: {e}")
            return OperationResult.fail(str(e), reason="precondition")

        now = utc_timestamp()
        data = record.data
        student_id = data.get("studentId")
        batch = self.store.batch()
        self.primary.upsert(
            batch,
            level,
            dept,
            record.id,
            {
                "active": True,
                "status": "active",
                "slot": slot,
                "reactivatedAt": now,
                "reactivatedBy": acting_identity,
                "revokedAt": DELETE_FIELD,
                "revokedBy": DELETE_FIELD,
            },
        )
        if student_id:
            batch.update(
                student_path(level, dept, student_id),
                {"isRepresentative": True, "crEmail": normalized, "crSlot": slot, "updatedAt": now},
            )
        account_id = resolve_account_id(self.store, data)
        if account_id:
            grant_role_flags(
                batch,
                account_id,
                email=normalized,
                name=data.get("name") or "",
                level=level,
                department=dept,
                slot=slot,
                student_id=student_id or "",
                college_id=data.get("collegeId"),
            )
        else:
            logger.warning(f"No account found for reactivated CR {normalized}")
        try:
            batch.commit()
        except DocumentNotFoundError as e:
            logger.warning(f"Reactivation of {normalized} aborted: {e}")
            return OperationResult.fail(
                f"Student {student_id} is no longer enrolled in {year_key(level)}/{dept}",
                reason="precondition",
            )

        self._reactivate_legacy(normalized, level, dept)
        self.manager.mirror_legacy_index(normalized, level, dept, slot, True, account_id)
        logger.info(f"Reactivated {normalized} in {slot} of {year_key(level)}/{dept}")
        return OperationResult.ok(
            f"{data.get('name') or normalized} reactivated as Class Representative",
            assignmentId=record.id,
            slot=slot,
            accountId=account_id,
        )

    def _latest_record(self, email: str, level: int, dept: str) -> DocumentSnapshot:
        if self.store.count(students_collection(level, dept)) == 0:
            raise PreconditionError(f"No students found in {year_key(level)}/{dept}")
        records = self.primary.find_by_student(level, dept, email=email, active_only=False)
        if not records:
            raise PreconditionError(
                f"No Class Representative record for {email} in {year_key(level)}/{dept}"
            )
        return max(records, key=lambda s: (str(s.data.get("assignedAt") or ""), s.id))

    def _free_slot_for(self, record: DocumentSnapshot, level: int, dept: str) -> str:
        occupants = occupants_by_slot(self.primary.list_active(level, dept))
        previous = canonical_slot(record.data.get("slot"))
        if previous:
            if occupants[previous]:
                holder = occupants[previous][0].data
                raise PreconditionError(
                    f"{previous} is held by {holder.get('name') or holder.get('email')}; "
                    "deactivate them first"
                )
            return previous
        for slot in SLOTS:
            if not occupants[slot]:
                return slot
        raise PreconditionError("Both CR slots are occupied")

    def _reactivate_legacy(self, email: str, level: int, dept: str) -> None:
        try:
            batch = self.store.batch()
            for snap in self.legacy.find_by_student(level, dept, email=email, active_only=False):
                self.legacy.upsert(
                    batch,
                    level,
                    dept,
                    snap.id,
                    {"active": True, "status": "active", "reactivatedAt": utc_timestamp()},
                )
            batch.commit()
        except Exception as e:
            logger.warning(f"Legacy CR reactivation failed for {email}: {str(e)}")

    def list_inactive(
        self, departments: Optional[List[str]] = None
    ) -> List[Dict[str, Any]]:
        inactive = []
        for level in YEAR_LEVELS:
            for dept in departments or self.manager.settings.departments:
                for snap in self.primary.all(level, dept):
                    if is_active(snap.data):
                        continue
                    inactive.append(
                        {
                            "id": snap.id,
                            "yearLevel": level,
                            "department": dept,
                            "name": snap.data.get("name"),
                            "email": snap.data.get("email"),
                            "slot": snap.data.get("slot"),
                            "status": snap.data.get("status"),
                        }
                    )
        return inactive

    def account_status(self, email: str) -> Dict[str, Any]:
        """Identity account and role flags for ``email``."""
        normalized = normalize_email(email)
        account_id = self.manager.identity.find_account_by_email(normalized)
        profile = self.store.get(user_path(account_id)) if account_id else None
        return {
            "email": normalized,
            "exists": account_id is not None,
            "accountId": account_id,
            "isCR": bool(profile and profile.get("isCR")),
            "role": (profile or {}).get("role"),
            "crYear": (profile or {}).get("crYear"),
            "crDepartment": (profile or {}).get("crDepartment"),
            "crSlot": (profile or {}).get("crSlot"),
        }
