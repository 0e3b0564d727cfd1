"""
Academic year promotion.

One run archives the terminal cohort, then moves students and their CR
assignments up one level at a time, highest level first, and finally writes
the new academic year. Nothing is rolled back on failure. Instead every
(step, department) pair that committed is recorded in a journal document at
``promotions/{targetYear}``; a later run for the same target year skips the
recorded pairs and retries the rest. The academic year only moves once every
pair has committed.
"""

from concurrent.futures import CancelledError
from typing import Any, Dict, List, Optional, Set, Tuple

from campus_cli.academic_year import AcademicYearClock
from campus_cli.config import Settings
from campus_cli.exceptions import PromotionLockError
from campus_cli.promotion.class_reps import ClassRepMigrator
from campus_cli.promotion.concurrent import DepartmentRunner
from campus_cli.promotion.graduates import GraduateArchiver
from campus_cli.promotion.students import StudentMigrator
from campus_cli.results import OperationResult, StageReport
from campus_cli.store import DocumentStore, utc_timestamp
from campus_cli.store.paths import promotion_journal_path
from campus_cli.utils.logging_config import create_specialized_logger, get_logger

logger = get_logger(__name__)

# highest level first, so no student is read at a level it was just written to
LEVEL_TRANSITIONS = [(3, 4), (2, 3), (1, 2)]

Step = Tuple[str, Optional[int], Optional[int]]


def promotion_steps() -> List[Step]:
    steps: List[Step] = [("archive", None, None)]
    for from_level, to_level in LEVEL_TRANSITIONS:
        steps.append(("students", from_level, to_level))
        steps.append(("crs", from_level, to_level))
    return steps


def step_key(step: Step, dept: str) -> str:
    kind, from_level, _ = step
    if from_level is None:
        return f"{kind}:{dept}"
    return f"{kind}:{from_level}:{dept}"


def prerequisites(step: Step) -> List[Step]:
    """Steps that must have committed for a department before ``step`` may run there."""
    kind, from_level, to_level = step
    if kind == "archive":
        return []
    if kind == "students":
        if from_level == 3:
            return [("archive", None, None)]
        return [("students", from_level + 1, to_level + 1)]
    requires = [("students", from_level, to_level)]
    if from_level < 3:
        requires.append(("crs", from_level + 1, to_level + 1))
    return requires


class PromotionPipeline:
    def __init__(
        self,
        store: DocumentStore,
        clock: AcademicYearClock,
        settings: Settings,
        departments: Optional[List[str]] = None,
        max_workers: Optional[int] = None,
    ):
        self.store = store
        self.clock = clock
        self.settings = settings
        self.departments = list(departments or settings.departments)
        runner = DepartmentRunner(max_workers or settings.max_workers)
        self.archiver = GraduateArchiver(store, runner)
        self.students = StudentMigrator(store, runner)
        self.class_reps = ClassRepMigrator(store, runner)

    def promote(self, acting_identity: str) -> OperationResult:
        if not acting_identity:
            return OperationResult.fail("An acting identity is required to promote")

        current_year = self.clock.load()
        new_year = current_year + 1
        audit = create_specialized_logger("campus_cli.promotion.audit", "promotions.log")

        try:
            self.clock.acquire_promotion_lock(current_year, acting_identity)
        except PromotionLockError as e:
            logger.warning(f"Promotion rejected: {e}")
            return OperationResult.fail(str(e), locked=True, previousYear=current_year)

        audit.info(f"Promotion {current_year} -> {new_year} started by {acting_identity}")
        committed = False
        try:
            result = self._run(current_year, new_year, acting_identity)
            committed = result.details.get("yearAdvanced", False)
            audit.info(f"Promotion {current_year} -> {new_year}: {result.message}")
            return result
        except (CancelledError, KeyboardInterrupt) as e:
            logger.error(f"Promotion {current_year} -> {new_year} cancelled: {e!r}")
            audit.info(f"Promotion {current_year} -> {new_year} cancelled")
            return OperationResult.fail(
                "Promotion cancelled. Completed departments are kept; run promote again to resume.",
                cancelled=True,
                previousYear=current_year,
            )
        except Exception as e:
            logger.error(
                f"Promotion {current_year} -> {new_year} failed: {type(e).__name__}: {str(e)}"
            )
            audit.info(f"Promotion {current_year} -> {new_year} failed: {e}")
            return OperationResult.fail(
                f"Failed to promote academic year: {str(e)}",
                previousYear=current_year,
                archivedCount=0,
                migratedCount=0,
            )
        finally:
            if not committed:
                self.clock.release_promotion_lock()

    def _run(self, current_year: int, new_year: int, acting_identity: str) -> OperationResult:
        journal = self._load_journal(current_year, new_year, acting_identity)
        done: Set[str] = set(journal.get("completed", []))
        failed: Dict[str, str] = {}
        skipped: List[str] = []
        counts = {"archive": 0, "students": 0, "crs": 0, "alreadyArchived": 0}
        reports: List[Dict[str, Any]] = []

        if done:
            logger.info(
                f"Resuming promotion to {new_year}: {len(done)} department steps already committed"
            )

        for step in promotion_steps():
            eligible, blocked = [], []
            for dept in self.departments:
                if step_key(step, dept) in done:
                    continue
                ready = all(step_key(p, dept) in done for p in prerequisites(step))
                (eligible if ready else blocked).append(dept)

            skipped.extend(step_key(step, dept) for dept in blocked)
            if not eligible:
                continue

            report = self._run_step(step, eligible, current_year, new_year, acting_identity)
            reports.append(report.as_dict())
            counts[step[0]] += report.count
            counts["alreadyArchived"] += report.extra.get("alreadyArchived", 0)
            for dept in report.completed:
                done.add(step_key(step, dept))
            for dept, error in report.failed.items():
                failed[step_key(step, dept)] = error

            self._save_journal(new_year, journal, done, failed, counts)

        expected = {
            step_key(step, dept)
            for step in promotion_steps()
            for dept in self.settings.departments
        }
        pending = sorted(expected - done - set(failed) - set(skipped))
        details: Dict[str, Any] = {
            "archivedCount": counts["archive"],
            "migratedCount": counts["students"],
            "crMigratedCount": counts["crs"],
            "alreadyArchived": counts["alreadyArchived"],
            "previousYear": current_year,
            "failedPartitions": sorted(failed),
            "errors": failed,
            "skippedPartitions": sorted(skipped),
            "pendingPartitions": pending,
            "stages": reports,
        }

        if not expected <= done:
            self._finish_journal(new_year, "partial")
            details.update(yearAdvanced=False, newYear=None)
            logger.warning(
                f"Promotion to {new_year} incomplete: failed {sorted(failed)}, skipped {sorted(skipped)}, pending {pending}"
            )
            return OperationResult.ok(
                f"Promotion to {new_year} partially applied: {counts['students']} students updated, "
                f"{counts['archive']} students graduated, {len(failed)} department steps failed. "
                f"The academic year stays {current_year}; run promote again to resume.",
                **details,
            )

        self.clock.commit_promotion(current_year, new_year, acting_identity)
        self._finish_journal(new_year, "completed")
        details.update(yearAdvanced=True, newYear=new_year)
        logger.info(f"Academic year promoted: {current_year} -> {new_year}")
        return OperationResult.ok(
            f"Academic year promoted to {new_year}. {counts['students']} students updated. "
            f"{counts['archive']} students graduated.",
            **details,
        )

    def _run_step(
        self,
        step: Step,
        departments: List[str],
        current_year: int,
        new_year: int,
        acting_identity: str,
    ) -> StageReport:
        kind, from_level, to_level = step
        if kind == "archive":
            return self.archiver.archive_terminal_level(
                acting_identity, departments, current_year
            )
        if kind == "students":
            return self.students.migrate_level(
                from_level, to_level, new_year, acting_identity, departments
            )
        return self.class_reps.migrate_crs_for_level(
            from_level, to_level, acting_identity, departments
        )

    def _load_journal(
        self, current_year: int, new_year: int, acting_identity: str
    ) -> Dict[str, Any]:
        path = promotion_journal_path(new_year)
        journal = self.store.get(path)
        if journal and journal.get("fromYear") == current_year and journal.get(
            "status"
        ) != "completed":
            return journal

        journal = {
            "fromYear": current_year,
            "targetYear": new_year,
            "status": "in_progress",
            "startedBy": acting_identity,
            "startedAt": utc_timestamp(),
            "completed": [],
            "failed": {},
        }
        self.store.set(path, journal)
        return journal

    def _save_journal(
        self,
        new_year: int,
        journal: Dict[str, Any],
        done: Set[str],
        failed: Dict[str, str],
        counts: Dict[str, int],
    ) -> None:
        totals = journal.setdefault("totals", {})
        self.store.set(
            promotion_journal_path(new_year),
            {
                "status": "in_progress",
                "completed": sorted(done),
                "failed": failed,
                "totals": {
                    key: totals.get(key, 0) + value for key, value in counts.items()
                },
                "updatedAt": utc_timestamp(),
            },
            merge=True,
        )

    def _finish_journal(self, new_year: int, status: str) -> None:
        self.store.set(
            promotion_journal_path(new_year),
            {"status": status, "finishedAt": utc_timestamp()},
            merge=True,
        )
