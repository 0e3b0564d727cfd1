from typing import Dict, List

from campus_cli.promotion.concurrent import DepartmentRunner, chunked
from campus_cli.promotion.students import validate_transition
from campus_cli.reps.stores import (
    AssignmentStore,
    LegacyAssignmentStore,
    PrimaryAssignmentStore,
    resolve_account_id,
)
from campus_cli.results import StageReport
from campus_cli.store import DocumentSnapshot, DocumentStore, utc_timestamp
from campus_cli.store.paths import legacy_index_path, user_path, year_id, year_key
from campus_cli.utils.logging_config import get_logger

logger = get_logger(__name__)


class ClassRepMigrator:
    """Keeps active CR assignments at the same level as the students they represent."""

    def __init__(self, store: DocumentStore, runner: DepartmentRunner):
        self.store = store
        self.runner = runner
        self.primary = PrimaryAssignmentStore(store)
        self.legacy = LegacyAssignmentStore(store)

    def migrate_crs_for_level(
        self,
        from_level: int,
        to_level: int,
        acting_identity: str,
        departments: List[str],
    ) -> StageReport:
        validate_transition(from_level, to_level)
        logger.info(f"Migrating CR records from {year_key(from_level)} to {year_key(to_level)}")
        return self.runner.run(
            f"crs:{from_level}->{to_level}",
            departments,
            lambda dept: self._migrate_department(
                dept, from_level, to_level, acting_identity
            ),
        )

    def _migrate_department(
        self, dept: str, from_level: int, to_level: int, acting_identity: str
    ) -> Dict[str, int]:
        active = self.primary.list_active(from_level, dept)
        moved = self._move(self.primary, active, dept, from_level, to_level, acting_identity)
        if moved:
            logger.info(
                f"Moved {len(moved)} CRs for {dept} from {year_key(from_level)} to {year_key(to_level)}"
            )

        legacy_failures = 0
        try:
            self._update_legacy_index(moved, to_level)
        except Exception as e:
            legacy_failures += 1
            logger.warning(f"Legacy CR index update failed for {dept}: {str(e)}")

        try:
            legacy_active = self.legacy.list_active(from_level, dept)
            self._move(
                self.legacy,
                legacy_active,
                dept,
                from_level,
                to_level,
                acting_identity,
                update_profiles=False,
            )
        except Exception as e:
            legacy_failures += 1
            logger.warning(f"Legacy nested CR migration failed for {dept}: {str(e)}")

        return {"count": len(moved), "legacyFailures": legacy_failures}

    def _move(
        self,
        assignment_store: AssignmentStore,
        assignments: List[DocumentSnapshot],
        dept: str,
        from_level: int,
        to_level: int,
        acting_identity: str,
        update_profiles: bool = True,
    ) -> List[DocumentSnapshot]:
        moved: List[DocumentSnapshot] = []
        for chunk in chunked(assignments, max(1, self.store.max_batch_operations // 3)):
            batch = self.store.batch()
            now = utc_timestamp()
            for snap in chunk:
                batch.set(
                    assignment_store.path(to_level, dept, snap.id),
                    {
                        **snap.data,
                        "year": year_key(to_level),
                        "currentYear": to_level,
                        "migratedAt": now,
                        "migratedBy": acting_identity,
                        "lastPromotedFrom": year_key(from_level),
                    },
                )
                batch.delete(snap.path)

                if not update_profiles:
                    continue
                account_id = resolve_account_id(self.store, snap.data)
                if account_id:
                    batch.set(
                        user_path(account_id),
                        {
                            "currentYear": to_level,
                            "year": year_key(to_level),
                            "crYear": year_key(to_level),
                            "crYearLevel": to_level,
                            "updatedAt": now,
                        },
                        merge=True,
                    )
                else:
                    logger.warning(
                        f"No user profile found for CR {snap.id} ({snap.data.get('email')}) in {dept}"
                    )
            batch.commit()
            moved.extend(chunk)
        return moved

    def _update_legacy_index(self, moved: List[DocumentSnapshot], to_level: int) -> None:
        with_email = [snap for snap in moved if snap.data.get("email")]
        for chunk in chunked(with_email, self.store.max_batch_operations):
            batch = self.store.batch()
            now = utc_timestamp()
            for snap in chunk:
                batch.set(
                    legacy_index_path(snap.data["email"]),
                    {
                        "year": year_id(to_level),
                        "yearLevel": to_level,
                        "currentYear": to_level,
                        "updatedAt": now,
                    },
                    merge=True,
                )
            batch.commit()
