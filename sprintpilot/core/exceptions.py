from datetime import date
from typing import Any, Dict, List, Optional, Union

Details = Union[Dict[str, Any], List[Dict[str, Any]]]


class AppError(Exception):
    """Base class for errors rendered as JSON HTTP responses."""

    status_code: int = 500
    code: str = "INTERNAL_ERROR"

    def __init__(self, message: str, details: Optional[Details] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"detail": self.message, "code": self.code}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(AppError):
    status_code = 400
    code = "VALIDATION_ERROR"


class AuthenticationError(AppError):
    status_code = 401
    code = "AUTHENTICATION_ERROR"


class AccessError(AppError):
    status_code = 403
    code = "ACCESS_DENIED"

    def __init__(self, message: str = "Access denied to project", details: Optional[Details] = None) -> None:
        super().__init__(message, details)


class NotFoundError(AppError):
    status_code = 404
    code = "NOT_FOUND"

    def __init__(self, resource: str, resource_id: Optional[int] = None) -> None:
        super().__init__(f"{resource} not found")
        self.resource = resource
        self.resource_id = resource_id


class ConflictError(AppError):
    status_code = 409
    code = "CONFLICT"


class QuotaExceededError(AppError):
    status_code = 429
    code = "QUOTA_EXCEEDED"

    def __init__(self, reset_date: Optional[date] = None) -> None:
        super().__init__("AI quota exceeded for this project")
        self.reset_date = reset_date

    def to_dict(self) -> Dict[str, Any]:
        body = super().to_dict()
        body["quota_remaining"] = 0
        body["reset_date"] = self.reset_date.isoformat() if self.reset_date else None
        return body


class ServiceUnavailableError(AppError):
    status_code = 503
    code = "AI_SERVICE_UNAVAILABLE"

    def __init__(self, message: str = "AI service not available", details: Optional[Details] = None) -> None:
        super().__init__(message, details)


class PersistenceError(AppError):
    status_code = 500
    code = "PERSISTENCE_ERROR"
