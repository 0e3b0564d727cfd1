from typing import Optional


class CampusError(Exception):
    """Base class for errors raised by the campus core."""


class ValidationError(CampusError):
    """Input rejected before any write was issued."""


class PreconditionError(CampusError):
    """The stored state does not allow the requested operation."""


class DocumentNotFoundError(CampusError):
    def __init__(self, path: str):
        super().__init__(f"No document at {path}")
        self.path = path


class BatchLimitError(CampusError):
    def __init__(self, limit: int):
        super().__init__(f"Batch exceeds the limit of {limit} operations")
        self.limit = limit


class AccountExistsError(CampusError):
    def __init__(self, email: str):
        super().__init__(f"An account already exists for {email}")
        self.email = email


class PromotionLockError(CampusError):
    """Another promotion holds the lock or the academic year moved underneath us."""


class StageFailure(CampusError):
    def __init__(self, stage: str, message: str, department: Optional[str] = None):
        where = f"{stage}/{department}" if department else stage
        super().__init__(f"{where}: {message}")
        self.stage = stage
        self.department = department


class AccountOrphanedError(CampusError):
    """The identity account call succeeded but the assignment batch did not commit."""

    def __init__(self, email: str, account_id: str, cause: Exception):
        super().__init__(
            f"Account {account_id} for {email} exists but the CR assignment was not recorded: {cause}"
        )
        self.email = email
        self.account_id = account_id
        self.cause = cause
