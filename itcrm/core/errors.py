from __future__ import annotations

from typing import Any


class AppError(Exception):
    """Base error carrying a stable code, a caller-safe message and an HTTP status."""

    status_code = 400
    code = "error"
    default_message = "Request failed"

    def __init__(self, message: str | None = None, *, code: str | None = None, details: Any = None) -> None:
        self.message = message or self.default_message
        if code is not None:
            self.code = code
        self.details = details
        super().__init__(self.message)


class UnauthenticatedError(AppError):
    status_code = 401
    code = "unauthenticated"
    default_message = "Not authenticated"


class ForbiddenError(AppError):
    status_code = 403
    code = "forbidden"
    default_message = "Forbidden"


class NotFoundError(AppError):
    status_code = 404
    code = "not_found"
    default_message = "Not found"


class ConflictError(AppError):
    status_code = 409
    code = "conflict"
    default_message = "Conflict"


class ValidationFailedError(AppError):
    status_code = 422
    code = "validation_failed"
    default_message = "Validation failed"


class RateLimitedError(AppError):
    status_code = 429
    code = "rate_limited"
    default_message = "Too many requests"
