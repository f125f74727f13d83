"""
Structured Logging Configuration.

JSON logs outside development, request correlation ids, and a scoped
context (connection id, operation) that the connection core attaches to
every line it logs while a mutation is in flight.
"""
import os
import sys
import json
import time
import asyncio
import logging
import traceback
from typing import Dict, Any
from datetime import datetime, timezone
from uuid import uuid4
from contextvars import ContextVar
from functools import wraps

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

# Context variables for request-scoped data
request_id_var: ContextVar[str] = ContextVar("request_id", default="")
user_id_var: ContextVar[str] = ContextVar("user_id", default="")
extra_context_var: ContextVar[Dict[str, Any]] = ContextVar("extra_context", default={})


class StructuredFormatter(logging.Formatter):
    """JSON-formatted log formatter."""

    def __init__(self, include_stack: bool = False):
        super().__init__()
        self.include_stack = include_stack
        self.service_name = os.getenv("SERVICE_NAME", "peer-connect")
        self.environment = os.getenv("ENVIRONMENT", "development")

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self.service_name,
            "environment": self.environment,
        }

        request_id = request_id_var.get()
        if request_id:
            log_entry["request_id"] = request_id

        user_id = user_id_var.get()
        if user_id:
            log_entry["user_id"] = user_id

        extra_context = extra_context_var.get()
        if extra_context:
            log_entry["context"] = extra_context

        log_entry["source"] = {
            "file": record.filename,
            "line": record.lineno,
            "function": record.funcName,
        }

        if record.exc_info:
            log_entry["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
            }
            if self.include_stack:
                log_entry["exception"]["stack_trace"] = traceback.format_exception(*record.exc_info)

        if hasattr(record, "extra_fields"):
            log_entry.update(record.extra_fields)

        return json.dumps(log_entry, default=str)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Assign a request id, remember the acting user, log timing."""

    def __init__(self, app, logger_name: str = "api"):
        super().__init__(app)
        self.logger = logging.getLogger(logger_name)

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid4())
        request_id_token = request_id_var.set(request_id)
        user_id_token = user_id_var.set(request.headers.get("X-User-ID", ""))
        start_time = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as e:
            duration_ms = (time.perf_counter() - start_time) * 1000
            self.logger.error(
                f"Request failed: {request.method} {request.url.path} - {e}",
                extra={"extra_fields": {
                    "event": "request_failed",
                    "method": request.method,
                    "path": request.url.path,
                    "duration_ms": round(duration_ms, 2),
                }},
                exc_info=True
            )
            raise
        finally:
            request_id_var.reset(request_id_token)
            user_id_var.reset(user_id_token)

        duration_ms = (time.perf_counter() - start_time) * 1000
        self.logger.info(
            f"{request.method} {request.url.path} - {response.status_code}",
            extra={"extra_fields": {
                "event": "request_completed",
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": round(duration_ms, 2),
            }}
        )
        response.headers["X-Request-ID"] = request_id
        return response


def setup_logging(
    level: str = None,
    json_format: bool = True,
    include_stack: bool = False
) -> None:
    """
    Setup application logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: Use JSON formatting outside development
        include_stack: Include stack traces in JSON
    """
    level = level or os.getenv("LOG_LEVEL", "INFO")
    log_level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)

    if json_format and os.getenv("ENVIRONMENT", "development") != "development":
        handler.setFormatter(StructuredFormatter(include_stack=include_stack))
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        ))

    root_logger.addHandler(handler)

    # Reduce noise from third-party libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("pynamodb").setLevel(logging.WARNING)

    logging.info(f"Logging configured: level={level}, json_format={json_format}")


def log_performance(operation_name: str = None):
    """Decorator logging duration and outcome of a sync or async operation."""
    def decorator(func):
        op_name = operation_name or func.__name__
        logger = logging.getLogger(func.__module__)

        def _log(start: float, error: Exception = None) -> None:
            duration_ms = round((time.perf_counter() - start) * 1000, 2)
            if error is None:
                logger.info(
                    f"Operation completed: {op_name}",
                    extra={"extra_fields": {
                        "event": "operation_completed",
                        "operation": op_name,
                        "duration_ms": duration_ms,
                    }}
                )
            else:
                logger.warning(
                    f"Operation failed: {op_name}: {error}",
                    extra={"extra_fields": {
                        "event": "operation_failed",
                        "operation": op_name,
                        "duration_ms": duration_ms,
                        "error": type(error).__name__,
                    }}
                )

        @wraps(func)
        async def async_wrapper(*args, **kwargs):
            start = time.perf_counter()
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                _log(start, e)
                raise
            _log(start)
            return result

        @wraps(func)
        def sync_wrapper(*args, **kwargs):
            start = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                _log(start, e)
                raise
            _log(start)
            return result

        if asyncio.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator


class LogContext:
    """Context manager for scoped logging context."""

    def __init__(self, **kwargs):
        self.context = kwargs
        self._token = None

    def __enter__(self):
        self._token = extra_context_var.set({**extra_context_var.get(), **self.context})
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        extra_context_var.reset(self._token)
        return False
