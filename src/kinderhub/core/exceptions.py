"""
Service Exceptions

Error types raised by service and repository code. Routers translate
them into ``HTTPException`` with a ``{"error": ..., "message": ...}``
detail via ``to_http_exception``.
"""

from fastapi import HTTPException


class ServiceError(Exception):
    """Base exception for service-layer errors."""

    def __init__(self, message: str, error_code: str, status_code: int = 400):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        super().__init__(message)


class NotFoundError(ServiceError):
    """Raised when a requested record does not exist."""

    def __init__(self, resource: str, error_code: str | None = None):
        super().__init__(
            message=f"{resource} not found",
            error_code=error_code or f"{resource.upper().replace(' ', '_')}_NOT_FOUND",
            status_code=404,
        )


class ForbiddenError(ServiceError):
    """Raised when the caller may not access a record."""

    def __init__(self, message: str = "Access denied", error_code: str = "ACCESS_DENIED"):
        super().__init__(message=message, error_code=error_code, status_code=403)


class ConflictError(ServiceError):
    """Raised on duplicates and state conflicts."""

    def __init__(self, message: str, error_code: str = "CONFLICT"):
        super().__init__(message=message, error_code=error_code, status_code=409)


class ValidationError(ServiceError):
    """Raised when input is well-formed but not acceptable."""

    def __init__(self, message: str, error_code: str = "VALIDATION_ERROR"):
        super().__init__(message=message, error_code=error_code, status_code=400)


class InvalidCredentialsError(ServiceError):
    def __init__(self):
        super().__init__(
            message="Invalid email or password.",
            error_code="INVALID_CREDENTIALS",
            status_code=401,
        )


class AccountInactiveError(ServiceError):
    def __init__(self):
        super().__init__(
            message="Your account has been deactivated.",
            error_code="ACCOUNT_INACTIVE",
            status_code=403,
        )


def to_http_exception(error: ServiceError) -> HTTPException:
    """Map a service error onto the HTTP error body used across the API."""
    return HTTPException(
        status_code=error.status_code,
        detail={"error": error.error_code, "message": error.message},
    )
