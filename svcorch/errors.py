from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    SECURITY_ERROR = "security_error"
    NOT_FOUND = "not_found"
    BUSY = "busy"
    TIMEOUT = "timeout"
    FAILED = "failed"
    RUNTIME_UNAVAILABLE = "runtime_unavailable"
    CANCELLED = "cancelled"


# Status codes the HTTP layer answers with for each error kind.
HTTP_STATUS: dict[ErrorKind, int] = {
    ErrorKind.SECURITY_ERROR: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.BUSY: 409,
    ErrorKind.TIMEOUT: 504,
    ErrorKind.FAILED: 500,
    ErrorKind.RUNTIME_UNAVAILABLE: 503,
    ErrorKind.CANCELLED: 499,
}


class ServiceError(Exception):
    kind: ErrorKind = ErrorKind.FAILED

    def __init__(self, message: str, service: str | None = None):
        super().__init__(message)
        self.service = service

    @property
    def http_status(self) -> int:
        return HTTP_STATUS[self.kind]


class SecurityError(ServiceError, ValueError):
    """Unsafe service name or a path that escapes the project root."""

    kind = ErrorKind.SECURITY_ERROR


class NotFoundError(ServiceError, LookupError):
    """Missing service directory or compose descriptor."""

    kind = ErrorKind.NOT_FOUND
