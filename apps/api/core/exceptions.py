"""
Custom exception classes and error handling.

Two families live here:
- APIException: authentication and role failures raised by core.auth.
- SchedulingError: domain errors raised by services. They carry the status
  code and error code the API renders them with, so services never build
  HTTP responses.
"""
from fastapi import HTTPException, status
from typing import Optional, Dict, Any


class APIException(HTTPException):
    """Base API exception with consistent structure."""

    def __init__(
        self,
        status_code: int,
        detail: str,
        error_code: Optional[str] = None,
        headers: Optional[Dict[str, Any]] = None
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.error_code = error_code


class UnauthorizedError(APIException):
    """Authentication required."""

    def __init__(self, detail: str = "Authentication required"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            error_code="UNAUTHORIZED",
            headers={"WWW-Authenticate": "Bearer"}
        )


class ForbiddenError(APIException):
    """Access denied."""

    def __init__(self, detail: str = "Access denied"):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=detail,
            error_code="FORBIDDEN"
        )


# ---------------------------------------------------------------------------
# Domain errors
# ---------------------------------------------------------------------------


class SchedulingError(Exception):
    """Base class for recurrence / instance lifecycle errors."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    error_code: str = "SCHEDULING_ERROR"
    retryable: bool = False

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail

    def to_dict(self) -> Dict[str, Any]:
        return {
            "detail": self.detail,
            "error_code": self.error_code,
            "retryable": self.retryable,
        }


class InvalidRuleError(SchedulingError):
    """Malformed recurrence rule, rejected before any materialization."""

    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    error_code = "INVALID_RULE"

    def __init__(self, detail: str, field: Optional[str] = None):
        super().__init__(detail)
        self.field = field

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        if self.field:
            data["field"] = self.field
        return data


class NotFoundError(SchedulingError):
    """Referenced resource does not exist (e.g. task no longer exists)."""

    status_code = status.HTTP_404_NOT_FOUND
    error_code = "NOT_FOUND"

    def __init__(self, resource: str, identifier: Any):
        super().__init__(f"{resource} not found: {identifier}")
        self.resource = resource
        self.identifier = str(identifier)


class InvalidTransitionError(SchedulingError):
    """Status change not permitted through the mutation API."""

    status_code = status.HTTP_409_CONFLICT
    error_code = "INVALID_TRANSITION"

    def __init__(self, current: str, requested: str, reason: Optional[str] = None):
        detail = f"Cannot change status from '{current}' to '{requested}'"
        if reason:
            detail = f"{detail}: {reason}"
        super().__init__(detail)
        self.current = current
        self.requested = requested


class PermissionDeniedError(SchedulingError):
    """Actor may not touch this resource."""

    status_code = status.HTTP_403_FORBIDDEN
    error_code = "FORBIDDEN"


class TransientStoreError(SchedulingError):
    """Connectivity or timeout talking to the backing store. Safe to retry."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    error_code = "STORE_UNAVAILABLE"
    retryable = True
