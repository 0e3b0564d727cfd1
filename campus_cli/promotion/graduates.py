from typing import Dict, List, Set

from campus_cli.config import TERMINAL_LEVEL
from campus_cli.promotion.concurrent import DepartmentRunner, chunked
from campus_cli.reps.stores import (
    AssignmentStore,
    LegacyAssignmentStore,
    PrimaryAssignmentStore,
    clear_role_flags,
    resolve_account_id,
)
from campus_cli.results import StageReport
from campus_cli.store import DocumentSnapshot, DocumentStore, utc_timestamp
from campus_cli.store.paths import graduate_path, normalize_email, students_collection
from campus_cli.utils.logging_config import get_logger

logger = get_logger(__name__)


def graduate_archive_id(student: DocumentSnapshot, current_year: int) -> str:
    return f"{_joining_year(student, current_year)}_{student.id}"


def _joining_year(student: DocumentSnapshot, current_year: int) -> int:
    joining = student.data.get("joiningYear")
    if isinstance(joining, int) and not isinstance(joining, bool):
        return joining
    return current_year - TERMINAL_LEVEL + 1


class GraduateArchiver:
    """Moves terminal-level students into the permanent graduate archive."""

    def __init__(self, store: DocumentStore, runner: DepartmentRunner):
        self.store = store
        self.runner = runner
        self.assignment_stores: List[AssignmentStore] = [
            PrimaryAssignmentStore(store),
            LegacyAssignmentStore(store),
        ]

    def archive_terminal_level(
        self, acting_identity: str, departments: List[str], current_year: int
    ) -> StageReport:
        """Archive every level-4 student of ``departments``.

        Archive records are never overwritten: a student whose record already
        exists in the archive is only removed from the active partition.
        """
        logger.info(
            f"Archiving year {TERMINAL_LEVEL} students for {', '.join(departments) or 'no departments'}"
        )
        return self.runner.run(
            "archive",
            departments,
            lambda dept: self._archive_department(dept, acting_identity, current_year),
        )

    def _archive_department(
        self, dept: str, acting_identity: str, current_year: int
    ) -> Dict[str, int]:
        students = self.store.list(students_collection(TERMINAL_LEVEL, dept))
        if not students:
            return {"count": 0}

        archived = 0
        already_archived = 0
        removed: List[DocumentSnapshot] = []
        per_batch = max(1, self.store.max_batch_operations // 2)

        try:
            for chunk in chunked(students, per_batch):
                batch = self.store.batch()
                chunk_new = 0
                chunk_existing = 0
                for student in chunk:
                    archive_path = graduate_path(
                        graduate_archive_id(student, current_year)
                    )
                    if self.store.exists(archive_path):
                        logger.warning(
                            f"{archive_path} already archived, removing active copy only"
                        )
                        chunk_existing += 1
                    else:
                        joining = _joining_year(student, current_year)
                        batch.set(
                            archive_path,
                            {
                                **student.data,
                                "archivedAt": utc_timestamp(),
                                "archivedBy": acting_identity,
                                "graduationYear": joining + TERMINAL_LEVEL - 1,
                                "department": dept,
                                "originalYear": TERMINAL_LEVEL,
                                "originalPath": student.path,
                            },
                        )
                        chunk_new += 1
                    batch.delete(student.path)

                batch.commit()
                archived += chunk_new
                already_archived += chunk_existing
                removed.extend(chunk)
                logger.info(f"Archived {chunk_new} graduates from {dept}")
        finally:
            if removed:
                self._deactivate_graduated_crs(dept, removed, acting_identity)

        return {"count": archived, "alreadyArchived": already_archived}

    def _deactivate_graduated_crs(
        self, dept: str, graduates: List[DocumentSnapshot], acting_identity: str
    ) -> None:
        student_ids = {g.id for g in graduates}
        emails = {normalize_email(g.data.get("email")) for g in graduates} - {""}

        for assignment_store in self.assignment_stores:
            try:
                count = self._deactivate_in(
                    assignment_store, dept, student_ids, emails, acting_identity
                )
                if count:
                    logger.info(
                        f"Deactivated {count} {assignment_store.name} CR records for graduated {dept} students"
                    )
            except Exception as e:
                logger.warning(
                    f"{assignment_store.name.capitalize()} CR deactivation failed for {dept}: {str(e)}"
                )

    def _deactivate_in(
        self,
        assignment_store: AssignmentStore,
        dept: str,
        student_ids: Set[str],
        emails: Set[str],
        acting_identity: str,
    ) -> int:
        matches = [
            snap
            for snap in assignment_store.list_active(TERMINAL_LEVEL, dept)
            if snap.data.get("studentId") in student_ids
            or normalize_email(snap.data.get("email")) in emails
        ]
        now = utc_timestamp()
        for chunk in chunked(matches, max(1, self.store.max_batch_operations // 2)):
            batch = self.store.batch()
            for snap in chunk:
                assignment_store.deactivate(
                    batch,
                    TERMINAL_LEVEL,
                    dept,
                    snap.id,
                    {
                        "status": "graduated",
                        "graduatedAt": now,
                        "revokedBy": acting_identity,
                        "note": f"Deactivated - Year {TERMINAL_LEVEL} graduated",
                    },
                )
                account_id = resolve_account_id(self.store, snap.data)
                if account_id:
                    clear_role_flags(batch, account_id, {"graduatedAt": now})
            batch.commit()
        return len(matches)
