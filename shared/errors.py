"""
Shared error handling for the Blog API.
"""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Standard error response format."""

    error: str
    message: str
    details: Optional[List[Any]] = None


class BlogAPIException(Exception):
    """Base exception for Blog API services."""

    status_code = 500

    def __init__(self, code: str, message: str, details: Optional[List[Any]] = None,
                 status_code: Optional[int] = None):
        self.code = code
        self.message = message
        self.details = details
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            error=self.code,
            message=self.message,
            details=self.details
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the error envelope, dropping empty details."""
        return self.to_response().model_dump(exclude_none=True)


class AuthenticationError(BlogAPIException):
    """Authentication-related errors."""

    status_code = 401

    def __init__(self, code: str = "Authentication failed", message: str = "Invalid credentials",
                 details: Optional[List[Any]] = None):
        super().__init__(code, message, details)


class AuthorizationError(BlogAPIException):
    """Authorization-related errors."""

    status_code = 403

    def __init__(self, code: str = "Permission denied", message: str = "Operation not permitted",
                 details: Optional[List[Any]] = None):
        super().__init__(code, message, details)


class ValidationError(BlogAPIException):
    """Validation-related errors."""

    status_code = 400

    def __init__(self, code: str = "Validation failed", message: str = "Please check your input data",
                 details: Optional[List[Any]] = None):
        super().__init__(code, message, details)


class NotFoundError(BlogAPIException):
    """Missing resource errors."""

    status_code = 404

    def __init__(self, code: str = "Not found", message: str = "The requested resource does not exist",
                 details: Optional[List[Any]] = None):
        super().__init__(code, message, details)


class ConflictError(BlogAPIException):
    """Uniqueness conflicts."""

    status_code = 409

    def __init__(self, code: str = "Conflict", message: str = "Resource already exists",
                 details: Optional[List[Any]] = None):
        super().__init__(code, message, details)


class ServiceUnavailableError(BlogAPIException):
    """Backing store unavailable."""

    status_code = 503

    def __init__(self, code: str = "Service unavailable", message: str = "Please try again later",
                 details: Optional[List[Any]] = None):
        super().__init__(code, message, details)
