from __future__ import annotations

from dataclasses import asdict, dataclass


@dataclass(frozen=True)
class FieldError:
    field: str
    message: str


class AppError(Exception):
    """Base class for all application exceptions."""
    def __init__(self, message: str, status_code: int = 500, details: dict = None):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(AppError):
    """Raised when input fails one or more field rules. Carries every violation, not just the first."""
    def __init__(self, errors: list[FieldError], message: str = "Validation failed"):
        self.errors = list(errors)
        super().__init__(
            message,
            status_code=422,
            details={"errors": [asdict(error) for error in self.errors]},
        )

    @property
    def fields(self) -> set[str]:
        return {error.field for error in self.errors}

    @classmethod
    def single(cls, field: str, message: str) -> "ValidationError":
        return cls([FieldError(field, message)], message=message)


class NotFoundError(AppError):
    """Raised when a requested department or resource is not found."""
    def __init__(self, resource_type: str, resource_id: str):
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(f"{resource_type} with id {resource_id} not found", status_code=404)


class PreconditionError(AppError):
    """Raised when the current state of an entity blocks the requested operation."""
    def __init__(self, message: str, blocking: list[str] | None = None):
        self.blocking = list(blocking or [])
        super().__init__(message, status_code=409, details={"blocking": self.blocking})


class PersistenceError(AppError):
    """Raised when a storage operation fails and its transaction was rolled back."""
    def __init__(self, message: str, attempted: int = 0):
        super().__init__(message, status_code=500, details={"attempted": attempted})
