"""
Domain error taxonomy.

Every error carries the HTTP status it maps to at the API boundary and a
human-readable message that is safe to show to the caller.
"""
from fastapi import status


class MedBookError(Exception):
    """Base class for all errors raised by the service layer."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    default_message: str = "Request could not be processed"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(MedBookError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid input"


class AuthError(MedBookError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Could not validate credentials"


class PermissionDeniedError(MedBookError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Not enough permissions"


class NotFoundError(MedBookError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Resource not found."


class LimitExceededError(MedBookError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "You have reached the maximum number of appointments allowed."


class AlreadyPaidError(MedBookError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Payment already completed."


class InvalidStateError(MedBookError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Operation not allowed in the current appointment state."


class RateLimitError(MedBookError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    default_message = "Too many requests. Please try again later."


class StoreUnavailableError(MedBookError):
    """Infrastructure fault; the message is never shown to callers."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_message = "Service temporarily unavailable"
