"""
Error taxonomy for FileVault.

Every error raised across the service boundary is a :class:`FileVaultError`
subclass carrying a stable machine-readable :class:`ErrorCode`, the HTTP
status the API layer maps it to, and a human-readable message.  The API layer
switches on ``code`` in a single exception handler (see ``filevault/main.py``).
"""

import enum
from typing import Any, Optional


class ErrorCode(str, enum.Enum):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    AUTHENTICATION_ERROR = "AUTHENTICATION_ERROR"
    AUTHORIZATION_ERROR = "AUTHORIZATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    INVALID_STATE = "INVALID_STATE"
    CONFLICT = "CONFLICT"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    QUEUE_UNAVAILABLE = "QUEUE_UNAVAILABLE"


class FileVaultError(Exception):
    """Base class for all errors reported to callers."""

    code: ErrorCode = ErrorCode.INTERNAL_ERROR
    status_code: int = 500
    retryable: bool = False

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self, include_details: bool = True) -> dict[str, Any]:
        error: dict[str, Any] = {"code": self.code.value, "message": self.message}
        if include_details and self.details:
            error["details"] = self.details
        if self.retryable:
            error["retryable"] = True
        return {"error": error}


class ValidationError(FileVaultError):
    code = ErrorCode.VALIDATION_ERROR
    status_code = 400


class FileValidationError(ValidationError):
    """Raised by the validate task when a stored object contradicts its record."""


class AuthenticationError(FileVaultError):
    code = ErrorCode.AUTHENTICATION_ERROR
    status_code = 401

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message)


class AuthorizationError(FileVaultError):
    code = ErrorCode.AUTHORIZATION_ERROR
    status_code = 403

    def __init__(self, message: str = "Insufficient permissions"):
        super().__init__(message)


class NotFoundError(FileVaultError):
    """Entity is absent or belongs to another tenant; callers cannot tell which."""

    code = ErrorCode.NOT_FOUND
    status_code = 404

    def __init__(self, resource: str, identifier: Optional[str] = None):
        message = f"{resource} '{identifier}' not found" if identifier else f"{resource} not found"
        super().__init__(message)
        self.resource = resource


class InvalidStateError(FileVaultError):
    code = ErrorCode.INVALID_STATE
    status_code = 409

    def __init__(self, message: str, current_status: Optional[str] = None):
        super().__init__(message, {"status": current_status} if current_status else None)
        self.current_status = current_status


class ConflictError(FileVaultError):
    """A concurrent transition on the same record won the race."""

    code = ErrorCode.CONFLICT
    status_code = 409


class InternalError(FileVaultError):
    code = ErrorCode.INTERNAL_ERROR
    status_code = 500


class QueueUnavailableError(InternalError):
    code = ErrorCode.QUEUE_UNAVAILABLE
    status_code = 503
    retryable = True

    def __init__(self, message: str = "Processing queue is unavailable, retry later"):
        super().__init__(message)
