from dataclasses import dataclass


@dataclass(frozen=True)
class ValidationIssue:
    field: str
    message: str
    type: str | None = None

    def as_dict(self) -> dict[str, str | None]:
        return {"field": self.field, "message": self.message, "type": self.type}


class LedgerError(Exception):
    """Base class for errors the inventory ledger reports to its callers."""

    code = "ledger_error"
    status_code = 400
    retryable = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(LedgerError):
    code = "validation_error"
    status_code = 422

    def __init__(self, issues: list[ValidationIssue], message: str = "Validation failed"):
        super().__init__(message)
        self.issues = list(issues)

    def __str__(self) -> str:
        joined = "; ".join(f"{issue.field}: {issue.message}" for issue in self.issues)
        return f"{self.message} ({joined})" if joined else self.message


class InvalidLocationError(LedgerError):
    code = "invalid_location"
    status_code = 400

    def __init__(self, location_id: str, reason: str = "not found"):
        super().__init__(f"Location {location_id} is {reason}")
        self.location_id = location_id
        self.reason = reason


class InsufficientStockError(LedgerError):
    code = "insufficient_stock"
    status_code = 409

    def __init__(self, message: str, *, available: int | None = None, requested: int | None = None):
        super().__init__(message)
        self.available = available
        self.requested = requested


class InvalidMovementError(LedgerError):
    code = "invalid_movement"
    status_code = 409


class ConcurrencyConflictError(LedgerError):
    """Row contention or lock timeout. Safe to retry with backoff."""

    code = "concurrency_conflict"
    status_code = 503
    retryable = True
