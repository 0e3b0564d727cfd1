"""
The process-wide academic year, i.e. the admission year of the level-1 cohort.

Year level L maps to the cohort that joined in ``current_year - L + 1``. The
value lives in ``settings/academicYear`` and is cached by ``AcademicYearClock``;
only a completed promotion changes it.
"""

from typing import Any, Dict, List, Optional

from campus_cli.config import YEAR_LEVELS, Settings
from campus_cli.exceptions import PromotionLockError
from campus_cli.results import OperationResult
from campus_cli.store import DELETE_FIELD, DocumentStore, utc_timestamp
from campus_cli.store.paths import SETTINGS_DOC_PATH, students_collection, year_id
from campus_cli.utils.logging_config import get_logger

logger = get_logger(__name__)


class AcademicYearClock:
    def __init__(self, store: DocumentStore, settings: Settings):
        self.store = store
        self.settings = settings
        self._year: Optional[int] = None

    @property
    def default_year(self) -> int:
        return self.settings.default_academic_year

    def load(self) -> int:
        """Read the persisted year, initializing or correcting it if needed.

        Never raises: if the settings document cannot be read the compiled-in
        default is returned.
        """
        try:
            data = self.store.get(SETTINGS_DOC_PATH) or {}
            year = data.get("currentYear")

            if isinstance(year, int) and not isinstance(year, bool):
                if year > self.settings.year_ceiling:
                    logger.warning(
                        f"Persisted academic year {year} is above {self.settings.year_ceiling}, "
                        f"resetting to {self.default_year}"
                    )
                    self.store.set(
                        SETTINGS_DOC_PATH,
                        {
                            "currentYear": self.default_year,
                            "lastUpdated": utc_timestamp(),
                            "updatedBy": "system",
                            "correctedFrom": year,
                        },
                        merge=True,
                    )
                    year = self.default_year
                self._year = year
                logger.info(f"Loaded academic year {year}")
                return year

            self.store.set(
                SETTINGS_DOC_PATH,
                {
                    "currentYear": self.default_year,
                    "lastUpdated": utc_timestamp(),
                    "updatedBy": "system",
                },
                merge=True,
            )
            self._year = self.default_year
            logger.info(f"Initialized academic year to {self.default_year}")
            return self.default_year
        except Exception as e:
            logger.error(f"Error loading academic year, using default: {e}")
            return self.default_year

    def current_year(self) -> int:
        if self._year is None:
            return self.load()
        return self._year

    def invalidate(self) -> None:
        self._year = None

    def joining_year_for_level(self, level: int) -> int:
        return self.current_year() - level + 1

    def year_display_label(self, level: int) -> str:
        return f"Year {level} – {self.joining_year_for_level(level)}"

    def acquire_promotion_lock(self, expected_year: int, acting_identity: str) -> None:
        acquired = self.store.compare_and_set(
            SETTINGS_DOC_PATH,
            {"currentYear": expected_year, "promotionLock": None},
            {
                "promotionLock": {
                    "holder": acting_identity,
                    "expectedYear": expected_year,
                    "acquiredAt": utc_timestamp(),
                }
            },
        )
        if not acquired:
            current = self.store.get(SETTINGS_DOC_PATH) or {}
            if current.get("promotionLock"):
                holder = current["promotionLock"].get("holder")
                raise PromotionLockError(f"A promotion started by {holder} is already running")
            raise PromotionLockError(
                f"Academic year changed to {current.get('currentYear')} (expected {expected_year})"
            )

    def release_promotion_lock(self) -> None:
        self.store.set(SETTINGS_DOC_PATH, {"promotionLock": DELETE_FIELD}, merge=True)

    def commit_promotion(self, previous_year: int, new_year: int, acting_identity: str) -> None:
        """Persist the new year; this is the only write that changes ``currentYear``."""
        if new_year != previous_year + 1:
            raise ValueError(f"Cannot move academic year from {previous_year} to {new_year}")

        now = utc_timestamp()
        committed = self.store.compare_and_set(
            SETTINGS_DOC_PATH,
            {"currentYear": previous_year},
            {
                "currentYear": new_year,
                "previousYear": previous_year,
                "lastUpdated": now,
                "updatedBy": acting_identity,
                "promotionDate": now,
                "promotionLock": DELETE_FIELD,
            },
        )
        if not committed:
            raise PromotionLockError(
                f"Academic year is no longer {previous_year}; refusing to write {new_year}"
            )
        self._year = new_year

    def promote(self, acting_identity: str, **pipeline_options: Any) -> OperationResult:
        from campus_cli.promotion.pipeline import PromotionPipeline

        pipeline = PromotionPipeline(self.store, self, self.settings, **pipeline_options)
        return pipeline.promote(acting_identity)


def student_distribution(
    store: DocumentStore, clock: AcademicYearClock, departments: List[str]
) -> List[Dict[str, Any]]:
    """Number of active students per year level, with their cohort labels."""
    distribution = []
    for level in YEAR_LEVELS:
        by_department = {
            dept: store.count(students_collection(level, dept)) for dept in departments
        }
        distribution.append(
            {
                "currentYear": level,
                "yearId": year_id(level),
                "joiningYear": clock.joining_year_for_level(level),
                "studentCount": sum(by_department.values()),
                "byDepartment": by_department,
                "label": clock.year_display_label(level),
            }
        )
    return distribution
