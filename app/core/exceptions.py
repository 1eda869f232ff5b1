from typing import Optional

from fastapi import status


class ServiceError(Exception):
    """Base exception for service layer errors."""

    code = "service_error"
    # Internal errors hide their message from non-administrative callers
    internal = False

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        *,
        code: Optional[str] = None,
        field: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        if code is not None:
            self.code = code
        self.field = field

    def to_detail(self) -> dict:
        detail = {"code": self.code, "message": self.message}
        if self.field:
            detail["field"] = self.field
        return detail


class PermissionDeniedError(ServiceError):
    code = "permission_denied"

    def __init__(self, message: str = "Insufficient permissions") -> None:
        super().__init__(message, status.HTTP_403_FORBIDDEN)


class NotFoundError(ServiceError):
    code = "not_found"

    def __init__(self, message: str = "Not found") -> None:
        super().__init__(message, status.HTTP_404_NOT_FOUND)


class TenantNotFoundError(NotFoundError):
    """No operation may run without a known school."""

    code = "unknown_tenant"


class ValidationError(ServiceError):
    """Caller input problem, recoverable by correcting the named field."""

    code = "validation_error"

    def __init__(self, message: str, *, field: Optional[str] = None, code: Optional[str] = None) -> None:
        super().__init__(message, status.HTTP_422_UNPROCESSABLE_ENTITY, code=code, field=field)


class TransitionError(ServiceError):
    """Rejected workflow transition. Caller must re-fetch state before retrying."""

    code = "invalid_transition"

    def __init__(self, reason: str, message: str, *, field: Optional[str] = None) -> None:
        super().__init__(message, status.HTTP_409_CONFLICT, code=reason, field=field)
        self.reason = reason


class ConflictError(ServiceError):
    code = "stale_version"

    def __init__(self, message: str = "Record was modified by another request; re-fetch and retry") -> None:
        super().__init__(message, status.HTTP_409_CONFLICT)


class DuplicateError(ServiceError):
    code = "duplicate"

    def __init__(self, message: str) -> None:
        super().__init__(message, status.HTTP_409_CONFLICT)


class SelfApprovalError(ServiceError):
    code = "self_approval_forbidden"

    def __init__(self, message: str = "Requester cannot approve their own request") -> None:
        super().__init__(message, status.HTTP_403_FORBIDDEN)


class ConfigurationError(ServiceError):
    """Malformed resource/action tags or permission configuration. Fatal, never a silent deny."""

    code = "configuration_error"
    internal = True

    def __init__(self, message: str) -> None:
        super().__init__(message, status.HTTP_500_INTERNAL_SERVER_ERROR)


class ConsistencyError(ServiceError):
    code = "consistency_error"
    internal = True

    def __init__(self, message: str) -> None:
        super().__init__(message, status.HTTP_500_INTERNAL_SERVER_ERROR)
