"""
Unified Error Handling Middleware.

Renders AppException and unexpected errors as a single JSON envelope:

    {"error": {"id", "code", "message", "timestamp", "path", "details", "suggestion"}}

and keeps an in-process count of errors by code.
"""
import os
import logging
from typing import Dict, Any, Optional
from datetime import datetime, timezone
from dataclasses import dataclass
from uuid import uuid4

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from app.core.exceptions import ERROR_STATUS_MAP, AppException, ErrorCode

logger = logging.getLogger(__name__)


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class ErrorResponse:
    """Standardized error response."""
    error_id: str
    code: str
    message: str
    status_code: int
    timestamp: str
    path: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    suggestion: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON response."""
        result = {
            "error": {
                "id": self.error_id,
                "code": self.code,
                "message": self.message,
                "timestamp": self.timestamp
            }
        }
        if self.path:
            result["error"]["path"] = self.path
        if self.details:
            result["error"]["details"] = self.details
        if self.suggestion:
            result["error"]["suggestion"] = self.suggestion
        return result

    def to_json_response(self) -> JSONResponse:
        return JSONResponse(status_code=self.status_code, content=self.to_dict())


class ErrorTracker:
    """Counts errors by code for the health payload."""

    def __init__(self):
        self._error_counts: Dict[str, int] = {}

    def track(
        self,
        error_id: str,
        error_code: ErrorCode,
        message: str,
        request_path: Optional[str] = None
    ) -> None:
        """Track an error occurrence."""
        code_key = error_code.value
        self._error_counts[code_key] = self._error_counts.get(code_key, 0) + 1

        # Client errors are routine; only server-side failures are logged as errors
        log = logger.error if _is_server_side(error_code) else logger.info
        log(f"Error tracked: {error_id} - {code_key}: {message} (path={request_path})")

    def get_stats(self) -> Dict[str, Any]:
        """Get error statistics."""
        return {
            "total_errors": sum(self._error_counts.values()),
            "by_code": dict(self._error_counts),
        }

    def reset(self) -> None:
        self._error_counts.clear()


def _is_server_side(code: ErrorCode) -> bool:
    return ERROR_STATUS_MAP.get(code, 500) >= 500


# Global error tracker
error_tracker = ErrorTracker()


def create_error_response(
    error: AppException,
    request: Optional[Request] = None
) -> ErrorResponse:
    """Create a standardized error response."""
    error_id = str(uuid4())

    error_tracker.track(
        error_id=error_id,
        error_code=error.code,
        message=error.message,
        request_path=str(request.url.path) if request else None
    )

    return ErrorResponse(
        error_id=error_id,
        code=error.code.value,
        message=error.message,
        status_code=error.status_code,
        timestamp=now_iso(),
        path=str(request.url.path) if request else None,
        details=error.details,
        suggestion=error.suggestion
    )


def create_internal_error_response(error: Exception, request: Request) -> ErrorResponse:
    """500 response for an unexpected exception; internals only shown when DEBUG=true."""
    error_id = str(uuid4())
    logger.exception(f"Unexpected error {error_id}: {error}")
    error_tracker.track(
        error_id=error_id,
        error_code=ErrorCode.INTERNAL_ERROR,
        message=str(error),
        request_path=str(request.url.path)
    )

    is_debug = os.getenv("DEBUG", "false").lower() == "true"
    return ErrorResponse(
        error_id=error_id,
        code=ErrorCode.INTERNAL_ERROR.value,
        message=str(error) if is_debug else "An internal error occurred",
        status_code=500,
        timestamp=now_iso(),
        path=str(request.url.path),
        suggestion="Please try again later or contact support"
    )


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Catches whatever escaped the route handlers."""

    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except AppException as e:
            return create_error_response(e, request).to_json_response()
        except Exception as e:
            return create_internal_error_response(e, request).to_json_response()


def setup_error_handling(app):
    """Setup error handling for FastAPI app."""
    app.add_middleware(ErrorHandlingMiddleware)

    @app.exception_handler(AppException)
    async def app_exception_handler(request: Request, exc: AppException):
        return create_error_response(exc, request).to_json_response()

    logger.info("Error handling middleware configured")
