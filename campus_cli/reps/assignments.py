"""
Class Representative assignment.

Every (year level, department) partition has two CR slots. A slot moves from
unassigned to active, and from active to replaced, deactivated or deleted.
The CR assignment document is authoritative; the student's
``isRepresentative`` flag and the account's role flags are projections that
are written in the same batch as the assignment change.
"""

import re
import secrets
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Set, Union

from nanoid import generate

from campus_cli.config import YEAR_LEVELS, Settings
from campus_cli.exceptions import (
    AccountExistsError,
    AccountOrphanedError,
    DocumentNotFoundError,
    PreconditionError,
    ValidationError,
)
from campus_cli.identity import IdentityProvider
from campus_cli.reps.stores import (
    PASSWORD_RESET_MARKER,
    SLOT_1,
    SLOTS,
    DocumentSnapshot,
    LegacyAssignmentStore,
    PrimaryAssignmentStore,
    canonical_slot,
    clear_role_flags,
    grant_role_flags,
    occupants_by_slot,
    resolve_account_id,
)
from campus_cli.results import OperationResult
from campus_cli.store import DocumentStore, WriteBatch, utc_timestamp
from campus_cli.store.paths import (
    legacy_index_path,
    normalize_email,
    student_id_for,
    student_path,
    year_id,
    year_key,
)
from campus_cli.utils.logging_config import get_logger

logger = get_logger(__name__)

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

StudentRef = Union[str, Dict[str, Any]]


def generate_cr_password(first_name: str) -> str:
    """Password in the ``FirstName@NNNN`` format handed to new representatives."""
    return f"{first_name}@{1000 + secrets.randbelow(9000)}"


def moved_during_write(error: DocumentNotFoundError) -> OperationResult:
    logger.warning(f"CR change aborted, {error.path} disappeared before commit")
    return OperationResult.fail(
        f"{error}. The student moved while the change was being applied; "
        "nothing was written. Run it again.",
        reason="conflict",
    )


@dataclass
class Candidate:
    student_id: str
    email: str
    name: str
    data: Dict[str, Any]

    @property
    def first_name(self) -> str:
        parts = self.name.split()
        return parts[0] if parts else "Student"

    def matches(self, assignment: Dict[str, Any]) -> bool:
        return assignment.get("studentId") == self.student_id or (
            normalize_email(assignment.get("email")) == self.email
        )


class ClassRepManager:
    def __init__(
        self, store: DocumentStore, identity: IdentityProvider, settings: Settings
    ):
        self.store = store
        self.identity = identity
        self.settings = settings
        self.primary = PrimaryAssignmentStore(store)
        self.legacy = LegacyAssignmentStore(store)

    # validation

    def validate_partition(self, level: int, dept: str) -> None:
        if level not in YEAR_LEVELS:
            raise ValidationError("Invalid year level. Must be 1, 2, 3, or 4.")
        if dept not in self.settings.departments:
            raise ValidationError(
                f"Invalid department. Must be one of: {', '.join(self.settings.departments)}"
            )

    def validate_slot(self, slot: Optional[str]) -> str:
        canonical = canonical_slot(slot)
        if canonical is None:
            raise ValidationError(f"Unknown slot {slot!r}. Use {SLOTS[0]} or {SLOTS[1]}.")
        return canonical

    def load_candidate(self, level: int, dept: str, student: StudentRef) -> Candidate:
        if isinstance(student, dict):
            try:
                student_id = student_id_for(student)
            except ValueError as e:
                raise ValidationError(str(e)) from e
            given = student
        else:
            student_id = str(student)
            given = {}

        stored = self.store.get(student_path(level, dept, student_id))
        if stored is None:
            raise ValidationError(
                f"Student {student_id} is not enrolled in {year_id(level)}/{dept}"
            )
        data = {**stored, **given}
        email = normalize_email(data.get("email"))
        if not EMAIL_PATTERN.match(email):
            raise ValidationError(
                "Student email is required to assign as Class Representative."
            )
        return Candidate(student_id, email, str(data.get("name") or "Unknown"), data)

    # queries

    def select_slot(self, level: int, dept: str) -> str:
        """First free slot in order; slot-1 when both are taken."""
        occupants = occupants_by_slot(self.primary.list_active(level, dept))
        for slot in SLOTS:
            if not occupants[slot]:
                return slot
        logger.warning(
            f"Both CR slots of {year_key(level)}/{dept} are occupied, defaulting to {SLOT_1}"
        )
        return SLOT_1

    def list_active(self, level: int, dept: str) -> Dict[str, Optional[Dict[str, Any]]]:
        occupants = occupants_by_slot(self.primary.list_active(level, dept))
        return {
            slot: ({"id": snaps[0].id, **snaps[0].data} if snaps else None)
            for slot, snaps in occupants.items()
        }

    # operations

    def assign(
        self,
        level: int,
        dept: str,
        student: StudentRef,
        acting_identity: str,
        slot: Optional[str] = None,
    ) -> OperationResult:
        try:
            self.validate_partition(level, dept)
            slot = self.validate_slot(slot) if slot else self.select_slot(level, dept)
            candidate = self.load_candidate(level, dept, student)
            return self._assign(level, dept, candidate, acting_identity, slot)
        except ValidationError as e:
            return OperationResult.fail(str(e), reason="validation")
        except AccountOrphanedError as e:
            logger.error(str(e))
            return OperationResult.fail(
                f"Failed to assign Class Representative: {e}. Run the assignment again; "
                "the existing account will be reused.",
                fatal=True,
                accountId=e.account_id,
                email=e.email,
            )

    def _assign(
        self,
        level: int,
        dept: str,
        candidate: Candidate,
        acting_identity: str,
        slot: str,
    ) -> OperationResult:
        account_id, credential, auth_method, reset_sent = self._ensure_account(candidate)
        is_new_user = auth_method == "created"

        now = utc_timestamp()
        displaced = self._displaced_by(level, dept, slot, candidate)
        displaced_ids = {snap.id for snap in displaced}
        assignment_id = generate()

        batch = self.store.batch()
        replaced = []
        for snap in displaced:
            same_student = candidate.matches(snap.data)
            self.primary.deactivate(
                batch,
                level,
                dept,
                snap.id,
                {
                    "status": "reassigned" if same_student else "replaced",
                    "replacedAt": now,
                    "revokedAt": now,
                    "revokedBy": acting_identity,
                    "replacedBy": assignment_id,
                },
            )
            if not same_student:
                replaced.append(snap)
                self._clear_holder(batch, level, dept, snap, displaced_ids, now)

        self.primary.upsert(
            batch,
            level,
            dept,
            assignment_id,
            {
                "slot": slot,
                "studentId": candidate.student_id,
                "uid": account_id,
                "name": candidate.name,
                "email": candidate.email,
                "rollNo": candidate.data.get("rollNo"),
                "year": year_key(level),
                "currentYear": level,
                "departmentId": dept,
                "collegeId": candidate.data.get("collegeId") or self.settings.college_id,
                "active": True,
                "status": "active",
                "assignedAt": now,
                "assignedBy": acting_identity,
                "password": credential,
                "passwordNote": (
                    "Use the password shown during assignment"
                    if is_new_user
                    else "Password reset email sent. CR must set a new password."
                ),
                "authMethod": auth_method,
                "isNewUser": is_new_user,
            },
        )
        batch.update(
            student_path(level, dept, candidate.student_id),
            {
                "isRepresentative": True,
                "crEmail": candidate.email,
                "crSlot": slot,
                "updatedAt": now,
            },
        )
        grant_role_flags(
            batch,
            account_id,
            email=candidate.email,
            name=candidate.name,
            level=level,
            department=dept,
            slot=slot,
            student_id=candidate.student_id,
            college_id=candidate.data.get("collegeId") or self.settings.college_id,
        )

        try:
            batch.commit()
        except Exception as e:
            raise AccountOrphanedError(candidate.email, account_id, e) from e

        self.mirror_legacy_index(candidate.email, level, dept, slot, True, account_id)
        for snap in replaced:
            if snap.data.get("email"):
                self.mirror_legacy_index(snap.data["email"], level, dept, slot, False)

        logger.info(
            f"Assigned {candidate.email} to {slot} of {year_key(level)}/{dept} "
            f"({auth_method}, replaced {len(replaced)})"
        )
        return OperationResult.ok(
            f"{candidate.name} has been assigned as Class Representative",
            assignmentId=assignment_id,
            slot=slot,
            accountId=account_id,
            password=credential if is_new_user else None,
            credential=credential,
            authMethod=auth_method,
            isNewUser=is_new_user,
            resetEmailSent=reset_sent,
            replaced=[snap.id for snap in replaced],
        )

    def _ensure_account(self, candidate: Candidate):
        """Create the CR login, or send a reset if the email already has one.

        Runs before, and outside of, the assignment batch.
        """
        account_id = self.identity.find_account_by_email(candidate.email)
        if account_id is None:
            password = generate_cr_password(candidate.first_name)
            try:
                account_id = self.identity.create_account(candidate.email, password)
                return account_id, password, "created", False
            except AccountExistsError:
                account_id = self.identity.find_account_by_email(candidate.email)
                if account_id is None:
                    raise
        reset_sent = self.identity.send_password_reset(candidate.email)
        return account_id, PASSWORD_RESET_MARKER, "reset", reset_sent

    def _displaced_by(
        self, level: int, dept: str, slot: str, candidate: Candidate
    ) -> List[DocumentSnapshot]:
        active = self.primary.list_active(level, dept)
        in_slot = occupants_by_slot(active)[slot]
        same_student = [snap for snap in active if candidate.matches(snap.data)]
        unique = {snap.id: snap for snap in in_slot + same_student}
        return list(unique.values())

    def _clear_holder(
        self,
        batch: WriteBatch,
        level: int,
        dept: str,
        snap: DocumentSnapshot,
        leaving_ids: Set[str],
        now: str,
    ) -> None:
        """Clear the projections of a holder unless they still hold another active assignment."""
        student_id = snap.data.get("studentId")
        email = normalize_email(snap.data.get("email"))
        still_held = [
            other
            for other in self.primary.list_active(level, dept)
            if other.id not in leaving_ids
            and (
                (student_id and other.data.get("studentId") == student_id)
                or (email and normalize_email(other.data.get("email")) == email)
            )
        ]
        if still_held:
            return

        # a student already gone from the partition has no flag to clear
        if student_id and self.store.exists(student_path(level, dept, student_id)):
            batch.update(
                student_path(level, dept, student_id),
                {"isRepresentative": False, "updatedAt": now},
            )
        account_id = resolve_account_id(self.store, snap.data)
        if account_id:
            clear_role_flags(batch, account_id, {"revokedAt": now})

    def mirror_legacy_index(
        self,
        email: str,
        level: int,
        dept: str,
        slot: str,
        active: bool,
        account_id: Optional[str] = None,
    ) -> None:
        fields: Dict[str, Any] = {
            "email": normalize_email(email),
            "year": year_id(level),
            "yearLevel": level,
            "currentYear": level,
            "departmentId": dept,
            "slot": slot,
            "active": active,
            "updatedAt": utc_timestamp(),
        }
        if account_id:
            fields["uid"] = account_id
        try:
            self.store.set(legacy_index_path(email), fields, merge=True)
        except Exception as e:
            logger.warning(f"Legacy CR index update failed for {email}: {str(e)}")

    def replace(
        self,
        level: int,
        dept: str,
        slot: str,
        new_student: StudentRef,
        acting_identity: str,
    ) -> OperationResult:
        try:
            self.validate_partition(level, dept)
            slot = self.validate_slot(slot)
            candidate = self.load_candidate(level, dept, new_student)
            holders = self.primary.find_active_by_slot(level, dept, slot)
            if not holders:
                raise PreconditionError(f"No active representative in {slot} to replace")
            if any(candidate.matches(h.data) for h in holders):
                raise ValidationError(
                    "Cannot replace a Class Representative with themselves"
                )
        except (ValidationError, PreconditionError) as e:
            return OperationResult.fail(str(e), reason="validation")

        now = utc_timestamp()
        batch = self.store.batch()
        holder_ids = {h.id for h in holders}
        for holder in holders:
            self.primary.deactivate(
                batch,
                level,
                dept,
                holder.id,
                {
                    "status": "replaced",
                    "replacedAt": now,
                    "revokedAt": now,
                    "revokedBy": acting_identity,
                },
            )
            self._clear_holder(batch, level, dept, holder, holder_ids, now)
        try:
            batch.commit()
        except DocumentNotFoundError as e:
            return moved_during_write(e)
        for holder in holders:
            if holder.data.get("email"):
                self.mirror_legacy_index(holder.data["email"], level, dept, slot, False)
        logger.info(f"Revoked {slot} of {year_key(level)}/{dept} for replacement")

        result = self.assign(level, dept, new_student, acting_identity, slot=slot)
        result.details["previousHolders"] = [
            {"id": h.id, "name": h.data.get("name"), "email": h.data.get("email")}
            for h in holders
        ]
        if result.success:
            result.message = (
                f"Replaced {holders[0].data.get('name') or 'current CR'} with "
                f"{candidate.name} in {slot}"
            )
        return result

    def deactivate(
        self, level: int, dept: str, slot: str, acting_identity: str
    ) -> OperationResult:
        return self._revoke_slot(level, dept, slot, acting_identity, delete=False)

    def delete(
        self, level: int, dept: str, slot: str, acting_identity: str
    ) -> OperationResult:
        return self._revoke_slot(level, dept, slot, acting_identity, delete=True)

    def _revoke_slot(
        self, level: int, dept: str, slot: str, acting_identity: str, delete: bool
    ) -> OperationResult:
        try:
            self.validate_partition(level, dept)
            slot = self.validate_slot(slot)
        except ValidationError as e:
            return OperationResult.fail(str(e), reason="validation")

        holders = self.primary.find_active_by_slot(level, dept, slot)
        if not holders:
            return OperationResult.fail("No representative found for this slot.")

        try:
            self._revoke(level, dept, holders, acting_identity, delete)
        except DocumentNotFoundError as e:
            return moved_during_write(e)
        action = "deleted" if delete else "deactivated"
        logger.info(f"{slot} of {year_key(level)}/{dept} {action} by {acting_identity}")
        return OperationResult.ok(
            f"{slot} {action}",
            slot=slot,
            assignmentIds=[h.id for h in holders],
        )

    def remove(
        self, level: int, dept: str, student: StudentRef, acting_identity: str
    ) -> OperationResult:
        """Revoke whatever active assignment the student holds in the partition."""
        try:
            self.validate_partition(level, dept)
            if isinstance(student, dict):
                student_id = student_id_for(student)
                email = normalize_email(student.get("email"))
            else:
                student_id = str(student).strip()
                email = ""
            if not student_id:
                raise ValidationError("A student id is required")
            stored = self.store.get(student_path(level, dept, student_id)) or {}
            email = email or normalize_email(stored.get("email"))
        except (ValidationError, ValueError) as e:
            return OperationResult.fail(str(e), reason="validation")

        matches = self.primary.find_by_student(level, dept, student_id, email)
        if not matches:
            return OperationResult.fail(
                f"{student_id} is not an active Class Representative"
            )

        try:
            self._revoke(level, dept, matches, acting_identity, delete=False)
        except DocumentNotFoundError as e:
            return moved_during_write(e)
        slots = occupants_by_slot(matches)
        removed_from = [slot for slot in SLOTS if slots[slot]]
        return OperationResult.ok(
            f"{stored.get('name') or student_id} removed from {', '.join(removed_from)}",
            assignmentIds=[m.id for m in matches],
            slots=removed_from,
        )

    def _revoke(
        self,
        level: int,
        dept: str,
        holders: List[DocumentSnapshot],
        acting_identity: str,
        delete: bool,
    ) -> None:
        now = utc_timestamp()
        holder_ids = {h.id for h in holders}
        batch = self.store.batch()
        for holder in holders:
            if delete:
                self.primary.remove(batch, level, dept, holder.id)
            else:
                self.primary.deactivate(
                    batch,
                    level,
                    dept,
                    holder.id,
                    {
                        "status": "deactivated",
                        "revokedAt": now,
                        "revokedBy": acting_identity,
                    },
                )
            self._clear_holder(batch, level, dept, holder, holder_ids, now)
        batch.commit()

        for holder in holders:
            if holder.data.get("email"):
                self.mirror_legacy_index(
                    holder.data["email"],
                    level,
                    dept,
                    canonical_slot(holder.data.get("slot")) or "",
                    False,
                )
