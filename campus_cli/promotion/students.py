from typing import Dict, List

from campus_cli.config import TERMINAL_LEVEL
from campus_cli.exceptions import ValidationError
from campus_cli.promotion.concurrent import DepartmentRunner, chunked
from campus_cli.results import StageReport
from campus_cli.store import DocumentStore, utc_timestamp
from campus_cli.store.paths import student_path, students_collection, year_id
from campus_cli.utils.logging_config import get_logger

logger = get_logger(__name__)


def joining_year_for(new_academic_year: int, level: int) -> int:
    return new_academic_year - level + 1


def validate_transition(from_level: int, to_level: int) -> None:
    if not isinstance(from_level, int) or not 1 <= from_level < TERMINAL_LEVEL:
        raise ValidationError(
            f"Invalid source year level {from_level!r}. Must be 1 to {TERMINAL_LEVEL - 1}."
        )
    if to_level != from_level + 1:
        raise ValidationError(
            f"Students can only move one level at a time ({from_level} -> {from_level + 1})"
        )


class StudentMigrator:
    """Moves every student of a year level into the next level's partition."""

    def __init__(self, store: DocumentStore, runner: DepartmentRunner):
        self.store = store
        self.runner = runner

    def migrate_level(
        self,
        from_level: int,
        to_level: int,
        new_academic_year: int,
        acting_identity: str,
        departments: List[str],
    ) -> StageReport:
        """
        Transplant students from ``from_level`` to ``to_level`` for each department.

        Each student is written under the same document id in the target
        partition and deleted from the source in the same batch, so a student
        is never authoritative in two partitions. Departments whose source
        partition is empty report a count of 0.

        Args:
            from_level: Source year level (1-3)
            to_level: Target year level, always from_level + 1
            new_academic_year: Academic year after the promotion
            acting_identity: Who triggered the promotion
            departments: Department codes to migrate

        Returns:
            StageReport with the number of students moved
        """
        validate_transition(from_level, to_level)
        stage = f"students:{from_level}->{to_level}"
        logger.info(f"Migrating year {from_level} students to year {to_level}")
        return self.runner.run(
            stage,
            departments,
            lambda dept: self._migrate_department(
                dept, from_level, to_level, new_academic_year, acting_identity
            ),
        )

    def _migrate_department(
        self,
        dept: str,
        from_level: int,
        to_level: int,
        new_academic_year: int,
        acting_identity: str,
    ) -> Dict[str, int]:
        students = self.store.list(students_collection(from_level, dept))
        if not students:
            return {"count": 0}

        academic_year = joining_year_for(new_academic_year, to_level)
        migrated = 0
        for chunk in chunked(students, max(1, self.store.max_batch_operations // 2)):
            batch = self.store.batch()
            now = utc_timestamp()
            for student in chunk:
                batch.set(
                    student_path(to_level, dept, student.id),
                    {
                        **student.data,
                        "year_level": to_level,
                        "currentYear": to_level,
                        "academic_year": academic_year,
                        "joiningYear": academic_year,
                        "currentAcademicYear": new_academic_year,
                        "migratedAt": now,
                        "migratedBy": acting_identity,
                        "previousLevel": year_id(from_level),
                    },
                )
                batch.delete(student.path)
            batch.commit()
            migrated += len(chunk)

        logger.info(
            f"Moved {migrated} {dept} students from year {from_level} to year {to_level} (batch {academic_year})"
        )
        return {"count": migrated}
