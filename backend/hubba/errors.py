"""
Closed error taxonomy shared by every caller-facing operation.

Services raise one of the `AppError` subclasses below before writing anything;
the surrounding transaction rolls back and the API layer maps `code` to an
HTTP status.
"""
from __future__ import annotations
from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    PERMISSION_DENIED = "permission-denied"
    INVALID_ARGUMENT = "invalid-argument"
    FAILED_PRECONDITION = "failed-precondition"
    NOT_FOUND = "not-found"
    RESOURCE_EXHAUSTED = "resource-exhausted"
    DEADLINE_EXCEEDED = "deadline-exceeded"
    INTERNAL = "internal"


HTTP_STATUS: dict[ErrorCode, int] = {
    ErrorCode.UNAUTHENTICATED: 401,
    ErrorCode.PERMISSION_DENIED: 403,
    ErrorCode.INVALID_ARGUMENT: 400,
    ErrorCode.FAILED_PRECONDITION: 409,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.RESOURCE_EXHAUSTED: 429,
    ErrorCode.DEADLINE_EXCEEDED: 410,
    ErrorCode.INTERNAL: 500,
}


class AppError(Exception):
    code: ErrorCode = ErrorCode.INTERNAL

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    @property
    def http_status(self) -> int:
        return HTTP_STATUS[self.code]

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"detail": self.message, "code": self.code.value}
        if self.details:
            body["details"] = self.details
        return body


class Unauthenticated(AppError):
    code = ErrorCode.UNAUTHENTICATED


class PermissionDenied(AppError):
    code = ErrorCode.PERMISSION_DENIED


class InvalidArgument(AppError):
    code = ErrorCode.INVALID_ARGUMENT


class FailedPrecondition(AppError):
    code = ErrorCode.FAILED_PRECONDITION


class NotFound(AppError):
    code = ErrorCode.NOT_FOUND


class ResourceExhausted(AppError):
    code = ErrorCode.RESOURCE_EXHAUSTED


class DeadlineExceeded(AppError):
    code = ErrorCode.DEADLINE_EXCEEDED


class Internal(AppError):
    code = ErrorCode.INTERNAL


class InsufficientFunds(FailedPrecondition):
    pass
