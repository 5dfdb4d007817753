"""Custom exception hierarchy for CourseForge."""

from enum import Enum
from typing import Optional, Dict, Any


class ErrorCode(str, Enum):
    """Standardized error codes for API responses."""

    # Admission errors
    INSUFFICIENT_CREDITS = "INSUFFICIENT_CREDITS"
    NOT_FOUND = "NOT_FOUND"
    PRECONDITION_FAILED = "PRECONDITION_FAILED"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    CONFLICT = "CONFLICT"

    # Job lifecycle
    INVALID_TRANSITION = "INVALID_TRANSITION"

    # Gateway errors
    PROVIDER_ERROR = "PROVIDER_ERROR"
    MALFORMED_RESPONSE = "MALFORMED_RESPONSE"
    RESEARCH_FAILED = "RESEARCH_FAILED"

    # Auth & rate limiting
    UNAUTHORIZED = "UNAUTHORIZED"
    RATE_LIMITED = "RATE_LIMITED"

    INTERNAL_ERROR = "INTERNAL_ERROR"


class CourseForgeException(Exception):
    """
    Base exception for all CourseForge errors.

    Provides structured error responses with:
    - Human-readable message
    - Machine-readable error code
    - HTTP status code
    - Optional additional details
    """

    def __init__(
        self,
        message: str,
        error_code: ErrorCode,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for JSON response."""
        return {
            "error": self.error_code.value,
            "message": self.message,
            "details": self.details
        }


class InsufficientCreditsError(CourseForgeException):
    """Owner cannot afford the requested work. Raised before any job exists."""

    def __init__(self, required: int, available: int):
        super().__init__(
            f"Insufficient credits: {required} required, {available} available",
            ErrorCode.INSUFFICIENT_CREDITS,
            status_code=402,
            details={"required": required, "available": available}
        )
        self.required = required
        self.available = available


class NotFoundError(CourseForgeException):
    """Entity does not exist, or belongs to another owner.

    Both cases produce the same error so existence is never leaked.
    """

    def __init__(self, kind: str, entity_id: str):
        super().__init__(
            f"{kind.capitalize()} not found: {entity_id}",
            ErrorCode.NOT_FOUND,
            status_code=404,
            details={"kind": kind, "id": entity_id}
        )


class PreconditionFailedError(CourseForgeException):
    """A job-type specific precondition is not met."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message,
            ErrorCode.PRECONDITION_FAILED,
            status_code=412,
            details=details
        )


class ValidationError(CourseForgeException):
    """Validation failed for user input."""

    def __init__(self, message: str, field: Optional[str] = None):
        details = {"field": field} if field else {}
        super().__init__(
            message,
            ErrorCode.VALIDATION_ERROR,
            status_code=400,
            details=details
        )


class ConflictError(CourseForgeException):
    """Target entity already has a generation in flight."""

    def __init__(self, kind: str, entity_id: str):
        super().__init__(
            f"{kind.capitalize()} {entity_id} is already being generated",
            ErrorCode.CONFLICT,
            status_code=409,
            details={"kind": kind, "id": entity_id}
        )


class InvalidTransitionError(CourseForgeException):
    """Attempted a job status transition its current status does not allow."""

    def __init__(self, job_id: str, current: str, target: str):
        super().__init__(
            f"Job {job_id} cannot move from {current} to {target}",
            ErrorCode.INVALID_TRANSITION,
            status_code=409,
            details={"job_id": job_id, "current": current, "target": target}
        )


class FailureKind(str, Enum):
    """Why a gateway call failed."""
    PROVIDER_ERROR = "provider_error"
    MALFORMED_RESPONSE = "malformed_response"


class GenerationFailure(CourseForgeException):
    """Model provider call failed or returned unusable content."""

    def __init__(self, message: str, kind: FailureKind = FailureKind.PROVIDER_ERROR):
        code = (
            ErrorCode.MALFORMED_RESPONSE
            if kind == FailureKind.MALFORMED_RESPONSE
            else ErrorCode.PROVIDER_ERROR
        )
        super().__init__(message, code, status_code=502, details={"kind": kind.value})
        self.kind = kind


class ResearchFailure(CourseForgeException):
    """Research provider call failed."""

    def __init__(self, message: str):
        super().__init__(message, ErrorCode.RESEARCH_FAILED, status_code=502)


class AuthenticationError(CourseForgeException):
    """Request lacks valid authentication credentials."""

    def __init__(self, message: str = "Invalid or missing authentication token"):
        super().__init__(
            message,
            ErrorCode.UNAUTHORIZED,
            status_code=401,
        )
