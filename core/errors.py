"""Typed error conditions raised by services and mapped to responses in ``main``."""

from fastapi import status


class AppError(Exception):
    """Base class for errors that carry their own HTTP status."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Internal server error"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class AuthenticationRequiredError(AppError):
    """Missing, malformed or expired credentials."""

    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Authentication required"


class ForbiddenError(AppError):
    """Authenticated, but not allowed to perform the operation."""

    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Not authorized"


class NotFoundError(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Not found"


class ValidationError(AppError):
    """A request violates a constraint (unknown role, bad extension, missing field)."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid request"


class ConflictError(AppError):
    status_code = status.HTTP_409_CONFLICT
    default_message = "Resource already exists"


class PayloadTooLargeError(AppError):
    status_code = 413
    default_message = "File too large"


class StorageUnavailableError(AppError):
    """The object storage backend could not complete a signing or transfer call."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_message = "Storage backend unavailable"
