from __future__ import annotations

from typing import Any, Dict, List, Optional


class ApiErrorCode:
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
    TOKEN_EXPIRED = "TOKEN_EXPIRED"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_INPUT = "INVALID_INPUT"
    NOT_FOUND = "NOT_FOUND"
    ALREADY_EXISTS = "ALREADY_EXISTS"
    CONFLICT = "CONFLICT"
    TENANT_NOT_FOUND = "TENANT_NOT_FOUND"
    TENANT_ACCESS_DENIED = "TENANT_ACCESS_DENIED"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    PREREQUISITES_NOT_MET = "PREREQUISITES_NOT_MET"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"


class AppError(Exception):
    """Base for errors that are safe to show to API clients."""

    status_code = 500
    code = ApiErrorCode.INTERNAL_ERROR

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if code is not None:
            self.code = code
        self.details = details


class ValidationError(AppError):
    status_code = 400
    code = ApiErrorCode.VALIDATION_ERROR

    def __init__(self, message: str, validation_errors: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message)
        self.validation_errors = validation_errors or []


class BadRequestError(AppError):
    status_code = 400
    code = ApiErrorCode.INVALID_INPUT


class UnauthorizedError(AppError):
    status_code = 401
    code = ApiErrorCode.UNAUTHORIZED

    def __init__(self, message: str = "Unauthorized", code: Optional[str] = None):
        super().__init__(message, code=code)


class ForbiddenError(AppError):
    status_code = 403
    code = ApiErrorCode.FORBIDDEN

    def __init__(self, message: str = "Forbidden"):
        super().__init__(message)


class TenantAccessError(AppError):
    status_code = 403
    code = ApiErrorCode.TENANT_ACCESS_DENIED

    def __init__(self, message: str = "Access denied to this tenant"):
        super().__init__(message)


class NotFoundError(AppError):
    status_code = 404
    code = ApiErrorCode.NOT_FOUND

    def __init__(self, resource: str = "Resource", code: Optional[str] = None):
        super().__init__(f"{resource} not found", code=code)
        self.resource = resource


class ConflictError(AppError):
    status_code = 409
    code = ApiErrorCode.CONFLICT


class InvalidTransitionError(AppError):
    status_code = 400
    code = ApiErrorCode.INVALID_TRANSITION

    def __init__(self, from_state: str, to_state: str):
        super().__init__(
            f"Invalid transition from {from_state} to {to_state}",
            details={"from": from_state, "to": to_state},
        )
