"""
Application exception hierarchy.

Every failure the connection core reports belongs to one of four kinds:
invalid argument, not found, conflict (a conditional write lost a race)
and collaborator unavailable (store or notification backend failing).
The HTTP layer maps each code to a status via ERROR_STATUS_MAP.
"""
from enum import Enum
from typing import Dict, Any, Optional


class ErrorCode(str, Enum):
    """Application error codes."""
    # General errors (1xxx)
    INTERNAL_ERROR = "E1000"
    VALIDATION_ERROR = "E1001"
    NOT_FOUND = "E1002"
    UNAUTHORIZED = "E1003"
    FORBIDDEN = "E1004"
    RATE_LIMITED = "E1005"
    CONFLICT = "E1006"

    # User errors (2xxx)
    USER_NOT_FOUND = "E2001"
    PROFILE_INCOMPLETE = "E2002"

    # Connection errors (3xxx)
    CONNECTION_NOT_FOUND = "E3001"
    SELF_CONNECTION = "E3002"
    INVALID_TRANSITION = "E3003"
    NOTIFICATION_NOT_FOUND = "E3004"

    # External service errors (6xxx)
    DATABASE_ERROR = "E6001"
    NOTIFICATION_BACKEND_ERROR = "E6002"
    CHANGE_FEED_ERROR = "E6003"


# Error code to HTTP status mapping
ERROR_STATUS_MAP = {
    ErrorCode.INTERNAL_ERROR: 500,
    ErrorCode.VALIDATION_ERROR: 422,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.UNAUTHORIZED: 401,
    ErrorCode.FORBIDDEN: 403,
    ErrorCode.RATE_LIMITED: 429,
    ErrorCode.CONFLICT: 409,
    ErrorCode.USER_NOT_FOUND: 404,
    ErrorCode.PROFILE_INCOMPLETE: 400,
    ErrorCode.CONNECTION_NOT_FOUND: 404,
    ErrorCode.SELF_CONNECTION: 422,
    ErrorCode.INVALID_TRANSITION: 409,
    ErrorCode.NOTIFICATION_NOT_FOUND: 404,
    ErrorCode.DATABASE_ERROR: 503,
    ErrorCode.NOTIFICATION_BACKEND_ERROR: 503,
    ErrorCode.CHANGE_FEED_ERROR: 503,
}


class AppException(Exception):
    """Base exception for application errors."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        suggestion: Optional[str] = None,
        original_error: Optional[Exception] = None
    ):
        self.code = code
        self.message = message
        self.details = details
        self.suggestion = suggestion
        self.original_error = original_error
        self.status_code = ERROR_STATUS_MAP.get(code, 500)
        super().__init__(message)


class InvalidArgumentException(AppException):
    """Self-connection attempts, empty identifiers, disallowed actors."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        code: ErrorCode = ErrorCode.VALIDATION_ERROR
    ):
        details = details or {}
        if field:
            details["field"] = field
        super().__init__(
            code=code,
            message=message,
            details=details,
            suggestion="Please check your input and try again"
        )


class NotFoundException(AppException):
    """Resource not found exception."""

    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[str] = None,
        code: ErrorCode = ErrorCode.NOT_FOUND
    ):
        message = f"{resource_type} not found"
        if resource_id:
            message = f"{resource_type} with ID '{resource_id}' not found"
        super().__init__(
            code=code,
            message=message,
            details={"resource_type": resource_type, "resource_id": resource_id}
        )


class ConflictException(AppException):
    """A conditional write lost a race, or the record is in an incompatible state.

    Callers should re-read the current record and decide again rather than
    resubmitting the same write.
    """

    def __init__(
        self,
        message: str,
        resource_id: Optional[str] = None,
        code: ErrorCode = ErrorCode.CONFLICT,
        original_error: Optional[Exception] = None
    ):
        super().__init__(
            code=code,
            message=message,
            details={"resource_id": resource_id} if resource_id else None,
            suggestion="Reload the latest state and try again",
            original_error=original_error
        )


class CollaboratorUnavailableException(AppException):
    """Persistence or notification backend unreachable or erroring."""

    def __init__(
        self,
        service_name: str,
        message: str,
        code: ErrorCode = ErrorCode.DATABASE_ERROR,
        original_error: Optional[Exception] = None
    ):
        super().__init__(
            code=code,
            message=f"{service_name}: {message}",
            details={"service": service_name},
            suggestion="Please try again later",
            original_error=original_error
        )
