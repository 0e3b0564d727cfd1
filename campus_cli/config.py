import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

load_dotenv()

DEFAULT_DEPARTMENTS = ["IT", "CSE", "ECE", "EEE", "MECH", "CIVIL"]

# Year 1 = 2025, Year 2 = 2024, Year 3 = 2023, Year 4 = 2022
DEFAULT_ACADEMIC_YEAR = 2025

TERMINAL_LEVEL = 4
YEAR_LEVELS = [1, 2, 3, 4]

# Upper bound on operations per batched write
MAX_BATCH_OPERATIONS = 500


def _split_departments(raw: Optional[str]) -> List[str]:
    if not raw:
        return list(DEFAULT_DEPARTMENTS)
    return [d.strip().upper() for d in raw.split(",") if d.strip()]


@dataclass
class Settings:
    database_url: str = "sqlite:///local.db"
    departments: List[str] = field(default_factory=lambda: list(DEFAULT_DEPARTMENTS))
    default_academic_year: int = DEFAULT_ACADEMIC_YEAR
    max_batch_operations: int = MAX_BATCH_OPERATIONS
    max_workers: int = 6
    college_id: Optional[str] = None

    @property
    def year_ceiling(self) -> int:
        """Largest persisted academic year accepted as plausible."""
        return self.default_academic_year + 1

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            database_url=os.getenv("DATABASE_URL", "sqlite:///local.db"),
            departments=_split_departments(os.getenv("CAMPUS_DEPARTMENTS")),
            default_academic_year=int(
                os.getenv("CAMPUS_DEFAULT_ACADEMIC_YEAR", str(DEFAULT_ACADEMIC_YEAR))
            ),
            max_batch_operations=int(
                os.getenv("CAMPUS_MAX_BATCH_OPERATIONS", str(MAX_BATCH_OPERATIONS))
            ),
            max_workers=int(os.getenv("CAMPUS_MAX_WORKERS", "6")),
            college_id=os.getenv("CAMPUS_COLLEGE_ID"),
        )
