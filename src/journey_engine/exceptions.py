"""
Custom exceptions for the Journey Engine.

This module defines a hierarchy of exceptions that provide clear error
handling throughout the application. Each exception includes:
- A descriptive message
- An error code for API responses
- HTTP status code mapping
- Optional details for debugging
"""

from typing import Any, Dict, Optional
from enum import Enum


class ErrorCode(str, Enum):
    """Error codes for consistent API error responses."""

    # General errors
    INTERNAL_ERROR = "INTERNAL_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    UNAUTHORIZED = "UNAUTHORIZED"

    # Journey errors
    STAGE_NOT_FOUND = "STAGE_NOT_FOUND"
    TASK_NOT_FOUND = "TASK_NOT_FOUND"
    STAGE_LOCKED = "STAGE_LOCKED"
    CONDITIONS_NOT_MET = "CONDITIONS_NOT_MET"

    # Catalog errors
    CATALOG_ERROR = "CATALOG_ERROR"

    # Data/Database errors
    DATABASE_ERROR = "DATABASE_ERROR"
    PERSISTENCE_READ_FAILED = "PERSISTENCE_READ_FAILED"
    PERSISTENCE_WRITE_FAILED = "PERSISTENCE_WRITE_FAILED"


class JourneyError(Exception):
    """
    Base exception for all Journey Engine errors.

    Attributes:
        message: Human-readable error message
        code: Error code from ErrorCode enum
        status_code: HTTP status code for API responses
        details: Optional dictionary with additional error details
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API response."""
        result: Dict[str, Any] = {
            "error": {
                "code": self.code.value,
                "message": self.message,
            }
        }
        if self.details:
            result["error"]["details"] = self.details
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code.value}, message={self.message!r})"


# ============================================================================
# Validation Errors (400)
# ============================================================================

class ValidationError(JourneyError):
    """Raised when input validation fails."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        error_details = details or {}
        if field:
            error_details["field"] = field
        super().__init__(
            message=message,
            code=ErrorCode.VALIDATION_ERROR,
            status_code=400,
            details=error_details,
        )


class ConditionsNotMetError(JourneyError):
    """Raised when a task is completed before its condition is satisfied."""

    def __init__(
        self,
        task_key: str,
        progress: float,
        current: Optional[float] = None,
        target: Optional[float] = None,
    ) -> None:
        details: Dict[str, Any] = {"task_key": task_key, "progress": progress}
        if current is not None:
            details["current"] = current
        if target is not None:
            details["target"] = target
        super().__init__(
            message="Task conditions not satisfied",
            code=ErrorCode.CONDITIONS_NOT_MET,
            status_code=400,
            details=details,
        )


# ============================================================================
# Authorization Errors (401/403)
# ============================================================================

class UnauthorizedError(JourneyError):
    """Raised when the caller could not be identified."""

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(
            message=message,
            code=ErrorCode.UNAUTHORIZED,
            status_code=401,
        )


class StageLockedError(JourneyError):
    """Raised when acting on a task whose stage has not been unlocked."""

    def __init__(self, stage_id: str) -> None:
        super().__init__(
            message="This stage is locked. Complete the previous stage to unlock it.",
            code=ErrorCode.STAGE_LOCKED,
            status_code=403,
            details={"stage_id": stage_id},
        )


# ============================================================================
# Not Found Errors (404)
# ============================================================================

class NotFoundError(JourneyError):
    """Raised when a requested resource is not found."""

    def __init__(
        self,
        resource_type: str,
        resource_id: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        message = f"{resource_type} with ID '{resource_id}' not found"
        error_details = details or {}
        error_details["resource_type"] = resource_type
        error_details["resource_id"] = resource_id
        super().__init__(
            message=message,
            code=ErrorCode.NOT_FOUND,
            status_code=404,
            details=error_details,
        )


class StageNotFoundError(NotFoundError):
    """Raised when a user stage is not found."""

    def __init__(self, stage_id: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(resource_type="Stage", resource_id=stage_id, details=details)
        self.code = ErrorCode.STAGE_NOT_FOUND


class TaskNotFoundError(NotFoundError):
    """Raised when a stage task is not found or belongs to another user."""

    def __init__(self, task_id: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(resource_type="Task", resource_id=task_id, details=details)
        self.code = ErrorCode.TASK_NOT_FOUND


# ============================================================================
# Catalog Errors
# ============================================================================

class CatalogError(JourneyError):
    """Raised when the stage catalog resource cannot be loaded."""

    def __init__(
        self,
        message: str,
        path: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        error_details = details or {}
        if path:
            error_details["path"] = path
        super().__init__(
            message=message,
            code=ErrorCode.CATALOG_ERROR,
            status_code=500,
            details=error_details,
        )


# ============================================================================
# Database Errors
# ============================================================================

class DatabaseError(JourneyError):
    """Raised when a database operation fails."""

    def __init__(
        self,
        message: str = "Database operation failed",
        operation: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        error_details = details or {}
        if operation:
            error_details["operation"] = operation
        super().__init__(
            message=message,
            code=ErrorCode.DATABASE_ERROR,
            status_code=500,
            details=error_details,
        )


class PersistenceReadError(DatabaseError):
    """Raised when the journey rows of a user cannot be read."""

    def __init__(self, operation: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(
            message="Failed to read journey state",
            operation=operation,
            details=details,
        )
        self.code = ErrorCode.PERSISTENCE_READ_FAILED


class PersistenceWriteError(DatabaseError):
    """Raised when a completion or seed write fails."""

    def __init__(self, operation: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(
            message="Failed to write journey state",
            operation=operation,
            details=details,
        )
        self.code = ErrorCode.PERSISTENCE_WRITE_FAILED
