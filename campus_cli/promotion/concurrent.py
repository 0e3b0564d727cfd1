from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Dict, Iterator, List, Sequence, TypeVar

from campus_cli.exceptions import StageFailure
from campus_cli.results import StageReport
from campus_cli.utils.logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

DepartmentWork = Callable[[str], Dict[str, int]]


def chunked(items: Sequence[T], size: int) -> Iterator[List[T]]:
    if size < 1:
        raise ValueError("Chunk size must be at least 1")
    for start in range(0, len(items), size):
        yield list(items[start : start + size])


class DepartmentRunner:
    """Runs one stage of work for several departments in parallel.

    Departments touch disjoint partitions, so they can proceed concurrently.
    A department whose work raises is recorded as failed and does not stop
    the others. ``run`` returns only after every department has finished.
    """

    def __init__(self, max_workers: int = 6):
        self.max_workers = max_workers

    def run(
        self, stage: str, departments: List[str], work: DepartmentWork
    ) -> StageReport:
        report = StageReport(stage)
        if not departments:
            return report

        workers = max(1, min(self.max_workers, len(departments)))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = {executor.submit(work, dept): dept for dept in departments}

            for future in as_completed(futures):
                dept = futures[future]
                try:
                    outcome = dict(future.result())
                except Exception as e:
                    logger.error(
                        f"Stage {stage} failed for department {dept}: {type(e).__name__}: {str(e)}"
                    )
                    report.record_failure(
                        dept, StageFailure(stage, f"{type(e).__name__}: {e}", dept)
                    )
                    continue

                count = outcome.pop("count", 0)
                report.record_success(dept, count)
                for key, value in outcome.items():
                    report.bump(key, value)
                logger.info(f"Stage {stage}: {dept} processed {count}")

        return report
