from typing import Any


class AppError(Exception):
    """Base class for errors that map onto the JSON error envelope."""

    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: str | None = None, *, details: Any = None):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    @property
    def error_type(self) -> str:
        return type(self).__name__

    @property
    def headers(self) -> dict[str, str] | None:
        return None


class ValidationError(AppError):
    status_code = 400
    default_message = "Validation failed"


class UnauthorizedError(AppError):
    status_code = 401
    default_message = "Authentication required"


class ForbiddenError(AppError):
    status_code = 403
    default_message = "Access denied"


class NotFoundError(AppError):
    status_code = 404
    default_message = "Resource not found"


class ConflictError(AppError):
    status_code = 409
    default_message = "Resource already exists"


class TooManyRequestsError(AppError):
    status_code = 429
    default_message = "Too many requests, please try again later"

    def __init__(self, message: str | None = None, *, retry_after: int = 1, details: Any = None):
        super().__init__(message, details=details)
        self.retry_after = max(int(retry_after), 1)

    @property
    def headers(self) -> dict[str, str]:
        return {"Retry-After": str(self.retry_after)}


class DataAccessError(AppError):
    status_code = 500
    default_message = "Database operation failed"


def field_error(field: str, message: str) -> ValidationError:
    return ValidationError("Validation failed", details=[{"field": field, "message": message}])
