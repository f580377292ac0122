"""Custom application exceptions."""

from typing import Any


class AppException(Exception):
    """Base application exception.

    Every domain error carries a stable machine-readable ``code``; the HTTP
    status is only the transport mapping of that code.
    """

    default_code = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        code: str | None = None,
        extra: dict[str, Any] | None = None,
    ):
        """Initialize exception with message, status code, code and extra payload."""
        self.message = message
        self.status_code = status_code
        self.code = code or self.default_code
        self.extra = extra or {}
        super().__init__(self.message)


class NotFoundException(AppException):
    """Resource not found exception."""

    default_code = "NOT_FOUND"

    def __init__(
        self,
        message: str = "Resource not found",
        code: str | None = None,
        extra: dict[str, Any] | None = None,
    ):
        """Initialize with 404 status code."""
        super().__init__(message, status_code=404, code=code, extra=extra)


class UnauthorizedException(AppException):
    """Unauthorized access exception."""

    default_code = "UNAUTHORIZED"

    def __init__(self, message: str = "Unauthorized", code: str | None = None):
        """Initialize with 401 status code."""
        super().__init__(message, status_code=401, code=code)


class ForbiddenException(AppException):
    """Forbidden access exception."""

    default_code = "FORBIDDEN"

    def __init__(
        self,
        message: str = "Forbidden",
        code: str | None = None,
        extra: dict[str, Any] | None = None,
    ):
        """Initialize with 403 status code."""
        super().__init__(message, status_code=403, code=code, extra=extra)


class ConflictException(AppException):
    """Conflict exception (overlaps, limits, invalid state transitions)."""

    default_code = "CONFLICT"

    def __init__(
        self,
        message: str = "Conflict",
        code: str | None = None,
        extra: dict[str, Any] | None = None,
    ):
        """Initialize with 409 status code."""
        super().__init__(message, status_code=409, code=code, extra=extra)


class ValidationException(AppException):
    """Malformed input exception."""

    default_code = "VALIDATION_ERROR"

    def __init__(
        self,
        message: str = "Validation error",
        code: str | None = None,
        extra: dict[str, Any] | None = None,
    ):
        """Initialize with 400 status code."""
        super().__init__(message, status_code=400, code=code, extra=extra)


class UpstreamUnavailableException(AppException):
    """A mandatory collaborator lookup failed."""

    default_code = "UPSTREAM_UNAVAILABLE"

    def __init__(
        self,
        message: str = "Upstream service unavailable",
        code: str | None = None,
        extra: dict[str, Any] | None = None,
    ):
        """Initialize with 503 status code."""
        super().__init__(message, status_code=503, code=code, extra=extra)
