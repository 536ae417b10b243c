"""
Error hierarchy shared by handlers, storage adapters and the app's
exception handlers.

Every error carries a machine code and the HTTP status it maps to. Storage
absence is never an error: adapters return ``None`` for missing records.
"""

from __future__ import annotations

from datetime import datetime, timezone


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


class AppError(Exception):
    """Base exception for all TR2B errors."""

    code = "APP_ERROR"
    http_status = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_response(self) -> dict:
        """Convert to the JSON error envelope."""
        return {
            "error": self.message,
            "code": self.code,
            "timestamp": utc_timestamp(),
        }


class ValidationError(AppError):
    """Malformed or missing request input."""

    code = "VALIDATION_ERROR"
    http_status = 400


class Unauthorized(AppError):
    code = "UNAUTHORIZED"
    http_status = 401


class NotFound(AppError):
    code = "NOT_FOUND"
    http_status = 404


class Conflict(AppError):
    """A uniqueness constraint was violated."""

    code = "CONFLICT"
    http_status = 409

    def __init__(self, message: str, *, namespace: str = "", field: str = ""):
        super().__init__(message)
        self.namespace = namespace
        self.field = field


class BackendUnavailable(AppError):
    """
    Transient failure talking to the backing store.

    Raised by adapters; GuardedStorage retries once and escalates to
    InternalError, so clients never see this status directly.
    """

    code = "BACKEND_UNAVAILABLE"
    http_status = 503


class InternalError(AppError):
    """
    Unrecoverable failure. The message stays in the logs; clients get the
    generic envelope only.
    """

    code = "INTERNAL_ERROR"
    http_status = 500

    def to_response(self) -> dict:
        return {
            "error": "Internal Server Error",
            "message": "An unexpected error occurred",
            "timestamp": utc_timestamp(),
        }
