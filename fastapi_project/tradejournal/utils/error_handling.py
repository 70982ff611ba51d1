"""
Standardized error handling utilities for the trading journal.

This module provides:
- Custom error classes with context
- Centralized error logging
- User-friendly error messages

Row-level import problems are never raised; they are collected on the
ImportResult. Only structural failures use these classes.
"""

import logging
from datetime import datetime, UTC
from enum import Enum
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class ErrorCode(Enum):
    """Standardized error codes for consistent error handling"""

    # Validation errors
    VALIDATION_ERROR = "VALIDATION_ERROR"

    # Resource errors
    NOT_FOUND = "NOT_FOUND"

    # Server errors
    SERVER_ERROR = "SERVER_ERROR"

    # Application-specific errors
    IMPORT_FORMAT_ERROR = "IMPORT_FORMAT_ERROR"


class AppError(Exception):
    """
    Custom application error with structured information.

    Provides consistent error handling across the application with:
    - Error codes for programmatic handling
    - Context for debugging
    - User-friendly messages
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.SERVER_ERROR,
        context: Optional[Dict[str, Any]] = None,
        user_message: Optional[str] = None,
        status_code: int = 500
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.context = context or {}
        self.user_message = user_message or self._get_default_user_message(code)
        self.status_code = status_code
        self.timestamp = datetime.now(UTC).isoformat()

    def _get_default_user_message(self, code: ErrorCode) -> str:
        """Generate user-friendly messages for error codes"""
        messages = {
            ErrorCode.NOT_FOUND: "The requested resource was not found.",
            ErrorCode.VALIDATION_ERROR: "Please check your input and try again.",
            ErrorCode.SERVER_ERROR: "An unexpected error occurred. Please try again.",
            ErrorCode.IMPORT_FORMAT_ERROR: "The uploaded file could not be read as a supported CSV export.",
        }
        return messages.get(code, "An unexpected error occurred.")

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for JSON serialization"""
        return {
            "message": self.message,
            "code": self.code.value,
            "user_message": self.user_message,
            "context": self.context,
            "timestamp": self.timestamp,
            "status_code": self.status_code
        }

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"


class ValidationError(AppError):
    """Specific error for validation failures"""

    def __init__(self, message: str, field: str = None, value: Any = None):
        context = {}
        if field:
            context["field"] = field
        if value is not None:
            context["value"] = str(value)

        super().__init__(
            message=message,
            code=ErrorCode.VALIDATION_ERROR,
            context=context,
            status_code=400
        )


class ResourceNotFoundError(AppError):
    """Error for missing resources (or resources owned by another user)"""

    def __init__(self, resource_type: str, resource_id: Any):
        message = f"{resource_type} with ID {resource_id} not found"
        context = {
            "resource_type": resource_type,
            "resource_id": str(resource_id)
        }

        super().__init__(
            message=message,
            code=ErrorCode.NOT_FOUND,
            context=context,
            status_code=404
        )


class ImportFormatError(AppError):
    """Raised at the HTTP seam when an upload is unreadable or in an unknown format"""

    def __init__(self, message: str, errors: Optional[list] = None):
        super().__init__(
            message=message,
            code=ErrorCode.IMPORT_FORMAT_ERROR,
            context={"errors": errors or []},
            status_code=400
        )


def log_error(error: AppError, request_id: str = None) -> None:
    """
    Log error with structured information for monitoring.
    """
    log_data = {
        "error_code": error.code.value,
        "error_message": error.message,
        "error_context": error.context,
        "error_timestamp": error.timestamp,
        "request_id": request_id
    }

    # Log at appropriate level based on error type
    if error.status_code >= 500:
        logger.error("Server error occurred: %s", error, extra=log_data)
    elif error.status_code >= 400:
        logger.warning("Client error occurred: %s", error, extra=log_data)
    else:
        logger.info("Error handled: %s", error, extra=log_data)


def get_user_friendly_message(error: AppError) -> str:
    """
    Get user-friendly error message based on error code and context.
    """
    if error.code == ErrorCode.VALIDATION_ERROR and "field" in error.context:
        field = error.context["field"]
        return f"Please check the {field} field and try again."

    if error.code == ErrorCode.NOT_FOUND and "resource_type" in error.context:
        resource_type = error.context["resource_type"]
        return f"The {resource_type.lower()} you're looking for doesn't exist."

    return error.user_message
