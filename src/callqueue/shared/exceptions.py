"""
Custom exceptions for the application.
"""


class AppError(Exception):
    """Base exception for application errors."""

    def __init__(self, message: str, code: str = "APP_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(message)


class NotFoundError(AppError):
    """Requested resource does not exist."""

    def __init__(self, message: str = "Not found", code: str = "NOT_FOUND") -> None:
        super().__init__(message, code)


class ValidationError(AppError):
    """Validation error."""

    def __init__(self, message: str, details: list[str] | None = None) -> None:
        super().__init__(message, "VALIDATION_ERROR")
        self.details = details or []
