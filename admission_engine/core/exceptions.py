"""
Service-layer errors. Each carries the HTTP status the API layer maps it to, so
routers never inspect message text.
"""

from typing import Optional

from fastapi import status


class ServiceError(Exception):
    """Base exception for service layer errors."""

    def __init__(self, message: str, status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class AdmissionNotFound(ServiceError):
    def __init__(self, admission_id) -> None:
        super().__init__("Admission not found", status.HTTP_404_NOT_FOUND)
        self.admission_id = admission_id


class IllegalTransition(ServiceError):
    """Requested status change is not legal from the record's current status."""

    def __init__(self, from_status, to_status, action: Optional[str] = None, exact: bool = False) -> None:
        current = getattr(from_status, "value", from_status)
        if action is None:
            message = f"Invalid status transition: {current} -> {getattr(to_status, 'value', to_status)}"
        elif exact:
            message = f"Cannot {action} for status: {current}"
        else:
            message = f"Cannot {action} from status: {current}"
        super().__init__(message, status.HTTP_409_CONFLICT)
        self.from_status = from_status
        self.to_status = to_status


class ValidationFailed(ServiceError):
    def __init__(self, field: str, reason: str) -> None:
        super().__init__(f"{field}: {reason}", status.HTTP_400_BAD_REQUEST)
        self.field = field
        self.reason = reason


class CodeAllocationExhausted(ServiceError):
    def __init__(self, scope: str) -> None:
        super().__init__(f"Code sequence exhausted for scope {scope}", status.HTTP_409_CONFLICT)
        self.scope = scope


class IdentityConflict(ServiceError):
    """A login identity with the derived username was created concurrently."""

    def __init__(self, username: str) -> None:
        super().__init__(f"Login account {username} could not be provisioned", status.HTTP_409_CONFLICT)
        self.username = username


class DependencyFailure(ServiceError):
    """A required collaborator (store, document generator, deadline) failed."""

    def __init__(self, which: str, message: Optional[str] = None) -> None:
        super().__init__(message or f"Dependency unavailable: {which}", status.HTTP_503_SERVICE_UNAVAILABLE)
        self.which = which
