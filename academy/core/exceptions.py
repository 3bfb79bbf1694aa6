from typing import Any, Dict, List, Optional

from fastapi import HTTPException, status

from academy.core.schemas import FieldError


class ServiceError(Exception):
    """Base exception for service layer errors."""

    kind = "InternalError"
    default_status = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code or self.default_status

    def to_detail(self) -> Dict[str, Any]:
        return {"kind": self.kind, "message": self.message}


class InvalidCredentials(ServiceError):
    kind = "InvalidCredentials"
    default_status = status.HTTP_401_UNAUTHORIZED


class BranchAccessDenied(ServiceError):
    kind = "BranchAccessDenied"
    default_status = status.HTTP_403_FORBIDDEN


class InvalidToken(ServiceError):
    kind = "InvalidToken"
    default_status = status.HTTP_401_UNAUTHORIZED


class TokenExpired(ServiceError):
    kind = "TokenExpired"
    default_status = status.HTTP_401_UNAUTHORIZED


class AccessDenied(ServiceError):
    """Role or branch scope violation on a single-record operation."""

    kind = "AccessDenied"
    default_status = status.HTTP_403_FORBIDDEN


class NotFound(ServiceError):
    kind = "NotFound"
    default_status = status.HTTP_404_NOT_FOUND


class ValidationFailed(ServiceError):
    """Field-level constraint violation. Carries every offending field, not just the first."""

    kind = "ValidationFailed"
    default_status = status.HTTP_400_BAD_REQUEST

    def __init__(
        self,
        message: str,
        errors: Optional[List[FieldError]] = None,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(message, status_code)
        self.errors = errors or []

    @classmethod
    def for_field(cls, field: str, message: str) -> "ValidationFailed":
        return cls(message, [FieldError(field=field, message=message)])

    def to_detail(self) -> Dict[str, Any]:
        detail = super().to_detail()
        detail["errors"] = [error.model_dump() for error in self.errors]
        return detail


class DuplicateKey(ServiceError):
    kind = "DuplicateKey"
    default_status = status.HTTP_409_CONFLICT

    def __init__(self, message: str, retryable: bool = False, status_code: Optional[int] = None) -> None:
        super().__init__(message, status_code)
        self.retryable = retryable

    def to_detail(self) -> Dict[str, Any]:
        detail = super().to_detail()
        detail["retryable"] = self.retryable
        return detail


class InvalidReference(ServiceError):
    """A linked branch, course or student is missing, inactive or out of scope."""

    kind = "InvalidReference"
    default_status = status.HTTP_400_BAD_REQUEST


class CourseFull(ServiceError):
    kind = "CourseFull"
    default_status = status.HTTP_400_BAD_REQUEST


class InvalidDateRange(ServiceError):
    kind = "InvalidDateRange"
    default_status = status.HTTP_400_BAD_REQUEST


class ResourceInUse(ServiceError):
    """Delete blocked by dependent active records."""

    kind = "ResourceInUse"
    default_status = status.HTTP_400_BAD_REQUEST


def http_error(e: ServiceError) -> HTTPException:
    """Convert a service error into the HTTPException raised by routers."""
    headers = None
    if e.status_code == status.HTTP_401_UNAUTHORIZED:
        headers = {"WWW-Authenticate": "Bearer"}
    return HTTPException(status_code=e.status_code, detail=e.to_detail(), headers=headers)
