"""Error taxonomy for messaging operations.

Every error is reported only to the caller that triggered it: as a
``sendResult`` frame on the live channel, or as an HTTP status on the read
path. Nothing here is retried by the server.
"""
from enum import Enum


class ErrorCode(str, Enum):
    INVALID_MESSAGE = "InvalidMessage"
    RECIPIENT_NOT_FOUND = "RecipientNotFound"
    FORBIDDEN = "Forbidden"
    STORAGE_ERROR = "StorageError"


class MessagingError(Exception):
    """Base class; ``code`` is what goes on the wire."""

    code: ErrorCode
    status_code: int = 400

    def __init__(self, detail: str = "") -> None:
        super().__init__(detail or self.code.value)
        self.detail = detail or self.code.value


class InvalidMessageError(MessagingError):
    code = ErrorCode.INVALID_MESSAGE
    status_code = 400


class RecipientNotFoundError(MessagingError):
    code = ErrorCode.RECIPIENT_NOT_FOUND
    status_code = 404


class ForbiddenError(MessagingError):
    code = ErrorCode.FORBIDDEN
    status_code = 403


class StorageError(MessagingError):
    code = ErrorCode.STORAGE_ERROR
    status_code = 503


class InvalidTargetError(ValueError):
    """A user id that is not in canonical form."""
