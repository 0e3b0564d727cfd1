from dataclasses import dataclass, field
from typing import Any, Dict, List


@dataclass
class OperationResult:
    success: bool
    message: str
    details: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, message: str, **details: Any) -> "OperationResult":
        return cls(True, message, details)

    @classmethod
    def fail(cls, message: str, **details: Any) -> "OperationResult":
        return cls(False, message, details)


@dataclass
class StageReport:
    """Outcome of one promotion stage across all departments it touched."""

    stage: str
    count: int = 0
    completed: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    extra: Dict[str, int] = field(default_factory=dict)

    def record_success(self, department: str, count: int) -> None:
        self.completed.append(department)
        self.count += count

    def record_failure(self, department: str, error: Exception) -> None:
        self.failed[department] = str(error)

    def bump(self, key: str, amount: int = 1) -> None:
        self.extra[key] = self.extra.get(key, 0) + amount

    def as_dict(self) -> Dict[str, Any]:
        return {
            "stage": self.stage,
            "count": self.count,
            "completed": sorted(self.completed),
            "failed": dict(self.failed),
            **self.extra,
        }
